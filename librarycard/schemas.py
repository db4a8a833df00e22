from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# --- Hesaplar ---
class UserSyncModel(BaseModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    auth_provider: str | None = Field(default="google", description="Harici oturum sağlayıcısı")
    email_verified: bool = True


class RegisterModel(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str | None = None
    invitation_token: str | None = None


class CredentialsModel(BaseModel):
    email: str
    password: str


class ForgotPasswordModel(BaseModel):
    email: str


class ResetPasswordModel(BaseModel):
    token: str
    password: str


class ProfileUpdateModel(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


# --- Konumlar ve raflar ---
class LocationModel(BaseModel):
    name: str
    description: str | None = None


class ShelfModel(BaseModel):
    name: str


class ShelfDeleteModel(BaseModel):
    target_shelf_id: int | None = Field(default=None, validation_alias=AliasChoices("targetShelfId", "target_shelf_id"))
    create_new_shelf: str | None = Field(default=None, validation_alias=AliasChoices("createNewShelf", "create_new_shelf"))
    confirm_delete_books: bool = Field(default=False, validation_alias=AliasChoices("confirmDeleteBooks", "confirm_delete_books"))


# --- Kitaplar ---
def _alias(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class BookCreateModel(BaseModel):
    """Yeni kitap. Yalnızca ISBN verilirse meta veriler otomatik getirilir."""
    model_config = ConfigDict(populate_by_name=True)

    isbn: str | None = None
    title: str | None = None
    authors: List[str] | str | None = None
    description: str | None = None
    thumbnail: str | None = None
    published_date: str | None = Field(default=None, validation_alias=_alias("published_date", "publishedDate"))
    categories: List[str] | str | None = None
    shelf_id: int | None = Field(default=None, validation_alias=_alias("shelf_id", "shelfId"))
    tags: List[str] | str | None = None
    extended_description: str | None = Field(default=None, validation_alias=_alias("extended_description", "extendedDescription"))
    subjects: List[str] | str | None = None
    page_count: int | None = Field(default=None, validation_alias=_alias("page_count", "pageCount"))
    google_average_rating: float | None = Field(
        default=None, validation_alias=AliasChoices("google_average_rating", "average_rating", "averageRating")
    )
    google_ratings_count: int | None = Field(
        default=None, validation_alias=AliasChoices("google_ratings_count", "ratings_count", "ratingsCount")
    )
    publisher_info: str | None = Field(default=None, validation_alias=_alias("publisher_info", "publisherInfo"))
    open_library_key: str | None = Field(default=None, validation_alias=_alias("open_library_key", "openLibraryKey"))
    enhanced_genres: List[str] | str | None = Field(default=None, validation_alias=_alias("enhanced_genres", "enhancedGenres"))
    series: str | None = None
    series_number: str | None = Field(default=None, validation_alias=_alias("series_number", "seriesNumber"))


class BookUpdateModel(BaseModel):
    shelf_id: int | None = Field(default=None, validation_alias=_alias("shelf_id", "shelfId"))
    tags: List[str] | None = None


class CheckoutModel(BaseModel):
    due_date: str | None = Field(default=None, validation_alias=_alias("due_date", "dueDate"))
    notes: str | None = None


class RatingModel(BaseModel):
    # Doğrulama servis katmanında yapılır (0 = sil, 1..5); 400 döndürmek için burada serbest
    rating: Any = None
    review_text: str | None = Field(default=None, validation_alias=_alias("reviewText", "review_text"))


class RemovalRequestModel(BaseModel):
    book_id: int | None = None
    reason: str | None = None
    reason_details: str | None = None


class ReviewCommentModel(BaseModel):
    review_comment: str | None = Field(default=None, validation_alias=_alias("review_comment", "comment"))


# --- Davetler ---
class InvitationCreateModel(BaseModel):
    invited_email: str | None = Field(default=None, validation_alias=_alias("invited_email", "email"))


class InvitationAcceptModel(BaseModel):
    invitation_token: str | None = Field(default=None, validation_alias=_alias("invitation_token", "token"))


# --- Yönetim ---
class SignupDecisionModel(BaseModel):
    comment: str | None = None


class CleanupUserModel(BaseModel):
    email_to_delete: str | None = None
    new_location_owners: Dict[str, str] | None = None


class RoleUpdateModel(BaseModel):
    role: str


# --- Diğer ---
class ContactModel(BaseModel):
    name: str | None = None
    email: str | None = None
    message: str | None = None


class OCRRequestModel(BaseModel):
    image: str | None = Field(default=None, validation_alias=_alias("image", "imageBase64"))
