"""
Waste-donation intake.

A DonationIntake holds one draft form. Pickup requests must pass a
serviceability check before they can be submitted; a successful submit
persists a DonationRecord and resets the draft (pickup preference kept).
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import FormValidationError, ServiceabilityUnknown
from ids import donation_reference
from pincode import is_valid_pincode
from schemas import DonationRecord, ImageAttachment, ServiceabilityResult
from storage import KeyValueStore, RecordCollection, scoped_key

logger = logging.getLogger(__name__)

DONATIONS_KEY = "rc_donations"
MAX_IMAGES = 5
MAX_IMAGE_SIZE = 5 * 1024 * 1024
MAX_NOTES = 500
MIN_ADDRESS = 6


class IntakeState(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


class PinStatus(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    OK = "ok"
    FAIL = "fail"
    ERROR = "error"


class DonationForm(BaseModel):
    """Structural rules only; pickup and consent rules are applied afterwards."""
    material_type: str = Field(..., min_length=2)
    quantity: str = Field(..., min_length=1)
    condition: Literal["clean", "good", "broken", "mixed"]
    images: List[ImageAttachment] = Field(default_factory=list, max_length=MAX_IMAGES)
    notes: str = Field("", max_length=MAX_NOTES)
    pickup: bool = False
    address: Optional[str] = None
    pincode: Optional[str] = None
    consent: bool = False

    @field_validator("images")
    @classmethod
    def check_image_sizes(cls, images: List[ImageAttachment]) -> List[ImageAttachment]:
        for image in images:
            if image.size > MAX_IMAGE_SIZE:
                raise ValueError(f"Each image must be at most 5MB ({image.filename})")
        return images


def validate_donation(values: Dict[str, Any]) -> DonationForm:
    """Validate in three passes: structure, pickup details, consent."""
    try:
        form = DonationForm.model_validate(values)
    except ValidationError as e:
        raise FormValidationError.from_pydantic(e)

    if form.pickup:
        errors = {}
        if not form.address or len(form.address.strip()) < MIN_ADDRESS:
            errors["address"] = "Pickup address is required."
        if not is_valid_pincode(form.pincode):
            errors["pincode"] = "Enter a valid 6-digit pincode."
        if errors:
            raise FormValidationError(errors)

    if not form.consent:
        raise FormValidationError({"consent": "Please confirm you're donating responsibly."})
    return form


def _blank_form(pickup: bool = False) -> Dict[str, Any]:
    return {
        "material_type": "",
        "quantity": "",
        "condition": None,
        "images": [],
        "notes": "",
        "pickup": pickup,
        "address": "",
        "pincode": "",
        "consent": False,
    }


class DonationIntake:
    def __init__(self, store: KeyValueStore, checker, scope: Optional[str] = None):
        self.checker = checker
        self.records = RecordCollection(store, scoped_key(DONATIONS_KEY, scope), DonationRecord)
        self.values: Dict[str, Any] = _blank_form()
        self.state = IntakeState.DRAFT
        self.pin_status = PinStatus.IDLE
        self.pin_region: Optional[str] = None
        self.pin_message = ""
        self.last_submitted: Optional[DonationRecord] = None

    def update(self, **fields) -> None:
        """Edit draft fields. Changing the pincode invalidates any earlier check."""
        unknown = set(fields) - set(self.values)
        if unknown:
            raise TypeError(f"Unknown donation fields: {', '.join(sorted(unknown))}")
        if "pincode" in fields and fields["pincode"] != self.values["pincode"]:
            self._reset_pin()
        self.values.update(fields)

    def add_images(self, images: List[ImageAttachment]) -> None:
        self.values["images"] = (list(self.values["images"]) + list(images))[:MAX_IMAGES]

    def remove_image(self, index: int) -> None:
        images = list(self.values["images"])
        del images[index]
        self.values["images"] = images

    def _reset_pin(self) -> None:
        self.pin_status = PinStatus.IDLE
        self.pin_region = None
        self.pin_message = ""

    def check_pincode(self) -> ServiceabilityResult:
        code = self.values.get("pincode") or ""
        if not is_valid_pincode(code):
            raise FormValidationError({"pincode": "Enter a valid 6-digit pincode."})

        self.pin_status = PinStatus.CHECKING
        self.pin_region = None
        self.pin_message = ""
        try:
            result = self.checker.check(code)
        except ServiceabilityUnknown as e:
            self.pin_status = PinStatus.ERROR
            self.pin_message = e.message
            raise

        if result.serviceable:
            self.pin_status = PinStatus.OK
            self.pin_region = result.region
            suffix = f" - {result.region}" if result.region else ""
            self.pin_message = f"Serviceable{suffix}. Pickup will be scheduled soon."
        else:
            self.pin_status = PinStatus.FAIL
            self.pin_message = "Sorry, we don't pick up in this area yet. You can still drop off."
        return result

    def submit(self) -> DonationRecord:
        form = validate_donation(self.values)

        if form.pickup and self.pin_status is not PinStatus.OK:
            if self.pin_status is PinStatus.FAIL:
                message = "This pincode is not serviceable for pickup."
            else:
                message = "Please verify pincode serviceability before submitting."
            raise FormValidationError({"pincode": message})

        record = DonationRecord(
            id=donation_reference(),
            material_type=form.material_type,
            quantity=form.quantity,
            condition=form.condition,
            images=form.images,
            notes=form.notes,
            pickup=form.pickup,
            address=form.address or None,
            pincode=form.pincode or None,
            consent=form.consent,
            pickup_serviceable=form.pickup and self.pin_status is PinStatus.OK,
            region=self.pin_region if form.pickup else None,
        )
        self.records.upsert(record)
        self.state = IntakeState.SUBMITTED
        self.last_submitted = record
        logger.info("Donation %s recorded (pickup=%s)", record.id, record.pickup)

        self.values = _blank_form(pickup=form.pickup)
        self._reset_pin()
        self.state = IntakeState.DRAFT
        return record

    def history(self) -> List[DonationRecord]:
        return self.records.all()
