"""Data models for the Click & Carry storefront."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import math
import time
from typing import Annotated, Any, Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    computed_field,
    field_validator,
    model_validator,
)

PLACEHOLDER_IMAGE = "https://images.unsplash.com/photo-1558002038-bb4237b9074f?q=80&w=1000"

IMAGE_FIELDS = ("image_url", "image_url_2", "image_url_3", "image_url_4", "image_url_5")

_url_adapter = TypeAdapter(AnyUrl)


def _to_decimal(value: Any) -> Any:
    # missing price counts as 0
    if value is None:
        return Decimal("0")
    # floats go through str so 1999.99 stays 1999.99
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _check_email(value: str) -> str:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise ValueError("Please enter a valid email address")
    return value


def _check_password(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters")
    return value


def _check_url(value: str) -> str:
    try:
        _url_adapter.validate_python(value)
    except PydanticValidationError:
        raise ValueError("Must be a valid URL")
    return value


Price = Annotated[Decimal, BeforeValidator(_to_decimal), Field(ge=0)]
Email = Annotated[str, AfterValidator(_check_email)]
Password = Annotated[str, AfterValidator(_check_password)]
ImageUrl = Annotated[str, AfterValidator(_check_url)]


class VariantGroup(BaseModel):
    """A named set of selectable product options."""

    id: str = Field(description="Variant group ID")
    name: str = Field(description="Display name")
    options: list[str] = Field(default_factory=list, description="Ordered options")


class Product(BaseModel):
    """Represents a catalog row."""

    id: str = Field(description="Product ID")
    name: str = Field(description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Price = Field(default=Decimal("0"), description="Product price")
    image_url: Optional[str] = Field(None, description="Primary image URL")
    image_url_2: Optional[str] = None
    image_url_3: Optional[str] = None
    image_url_4: Optional[str] = None
    image_url_5: Optional[str] = None
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    variants: list[VariantGroup] = Field(
        default_factory=list, description="Variant groups attached at read time, never stored"
    )

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    def images(self) -> list[str]:
        """Set image references in order, or the placeholder image."""
        images = [getattr(self, name) for name in IMAGE_FIELDS if getattr(self, name)]
        return images or [PLACEHOLDER_IMAGE]

    def persisted_fields(self) -> dict[str, Any]:
        """Fields backed by the products table (variants excluded)."""
        data = self.model_dump(exclude={"variants", "created_at"}, exclude_none=True)
        data["price"] = float(self.price)
        return data


class CartItem(BaseModel):
    """Represents one line of the shopping cart."""

    id: str = Field(description="Cart item ID")
    user_id: str = Field(description="Owning user ID")
    product_id: str = Field(description="Referenced product ID")
    quantity: int = Field(gt=0, description="Quantity of the product")
    selected_variants: Optional[dict[str, str]] = Field(
        None, description="Variant options chosen when the item was added"
    )
    product: Optional[Product] = Field(None, description="Joined product row")

    @model_validator(mode="before")
    @classmethod
    def _unpack_join(cls, data: Any) -> Any:
        # PostgREST returns the embedded resource under the table name
        if isinstance(data, dict) and "products" in data and "product" not in data:
            data = dict(data)
            data["product"] = data.pop("products")
        return data

    @field_validator("id", "user_id", "product_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @property
    def unit_price(self) -> Decimal:
        if self.product is None:
            return Decimal("0")
        return self.product.price or Decimal("0")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def calculate_totals(items: list[CartItem]) -> tuple[int, Decimal]:
    """Sum of quantities and sum of quantity x price (missing price = 0)."""
    total_items = sum(item.quantity for item in items)
    total_price = sum((item.subtotal for item in items), Decimal("0"))
    return total_items, total_price


class Cart(BaseModel):
    """Snapshot of the shopping cart."""

    items: list[CartItem] = Field(default_factory=list, description="Cart items")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_items(self) -> int:
        return calculate_totals(self.items)[0]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_price(self) -> Decimal:
        return calculate_totals(self.items)[1]


class User(BaseModel):
    """Authenticated identity as reported by the auth API."""

    id: str
    email: Optional[str] = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class SessionData(BaseModel):
    """Session data for an authenticated user."""

    access_token: str = Field(description="Bearer token for the REST API")
    refresh_token: Optional[str] = Field(None, description="Token used to renew the session")
    expires_at: Optional[int] = Field(None, description="Expiry as a unix timestamp")
    user: User

    @model_validator(mode="before")
    @classmethod
    def _derive_expiry(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("expires_at") and data.get("expires_in"):
            data = dict(data)
            data["expires_at"] = int(time.time()) + int(data["expires_in"])
        return data

    def is_expired(self, leeway: int = 10) -> bool:
        """Check whether the access token is expired or about to expire."""
        if self.expires_at is None:
            return False
        return time.time() + leeway >= self.expires_at


class Profile(BaseModel):
    """Row of the profiles table."""

    id: str
    role: Optional[str] = None


class Notice(BaseModel):
    """A transient user-visible notice."""

    level: Literal["success", "error"]
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuthCredentials(BaseModel):
    """Sign-in form values."""

    email: Email
    password: Password


class SignUpForm(BaseModel):
    """Sign-up form values."""

    name: str
    email: Email
    password: Password
    gender: Literal["male", "female"] = "male"

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if len(value.strip()) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value


class ProductForm(BaseModel):
    """Admin product form values. Price is kept as entered."""

    model_config = ConfigDict(validate_default=True)

    name: str = ""
    description: str = ""
    price: str = ""
    image_url: ImageUrl = ""
    image_url_2: Optional[str] = None
    image_url_3: Optional[str] = None
    image_url_4: Optional[str] = None
    image_url_5: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def _price_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        return value

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description is required")
        return value

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: str) -> str:
        try:
            parsed = Decimal(value.strip())
        except (InvalidOperation, ValueError):
            raise ValueError("Price must be a positive number")
        if not parsed.is_finite() or parsed <= 0:
            raise ValueError("Price must be a positive number")
        # the store receives a float, so check the value that is sent
        amount = float(parsed)
        if not math.isfinite(amount) or amount <= 0:
            raise ValueError("Price must be a positive number")
        return value.strip()

    @field_validator("image_url_2", "image_url_3", "image_url_4", "image_url_5")
    @classmethod
    def _check_extra_images(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        return _check_url(value)

    @classmethod
    def from_product(cls, product: Product) -> "ProductForm":
        """Pre-populate the form from a catalog row."""
        return cls.model_construct(
            name=product.name,
            description=product.description or "",
            price=str(product.price),
            image_url=product.image_url or "",
            image_url_2=product.image_url_2,
            image_url_3=product.image_url_3,
            image_url_4=product.image_url_4,
            image_url_5=product.image_url_5,
        )

    def to_row(self, clear_blank: bool = False) -> dict[str, Any]:
        """
        Row payload for the products table.

        Args:
            clear_blank: Send blank image fields as null so an update clears them
        """
        row: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "price": float(Decimal(self.price)),
        }
        for name in IMAGE_FIELDS:
            value = getattr(self, name)
            if value:
                row[name] = value
            elif clear_blank:
                row[name] = None
        return row
