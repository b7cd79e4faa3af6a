"""Activity payload variants.

Each activity type carries its own payload model; the ``type`` field is the
discriminator, so required fields are enforced per variant rather than on
one record with many optional columns.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from showcase.errors import ValidationError


class ActivityType(str, Enum):
    WEBSITE_SUBMIT = "website_submit"
    WEBSITE_LIKE = "website_like"
    WEBSITE_COMMENT = "website_comment"
    WEBSITE_RATING = "website_rating"
    USER_FOLLOW = "user_follow"
    USER_REGISTER = "user_register"
    BOOKMARK_CREATE = "bookmark_create"
    PROFILE_UPDATE = "profile_update"
    ANNOUNCEMENT = "announcement"


WEBSITE_REACTION_TYPES = frozenset({
    ActivityType.WEBSITE_LIKE.value,
    ActivityType.WEBSITE_COMMENT.value,
    ActivityType.WEBSITE_RATING.value,
})


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class _WebsiteRef(_Payload):
    website_id: str = Field(..., min_length=1, max_length=128)
    website_title: str | None = Field(None, max_length=256)
    website_image_url: str | None = None


class WebsiteSubmitPayload(_WebsiteRef):
    type: Literal["website_submit"] = "website_submit"
    website_title: str = Field(..., min_length=1, max_length=256)


class WebsiteLikePayload(_WebsiteRef):
    type: Literal["website_like"] = "website_like"


class WebsiteCommentPayload(_WebsiteRef):
    type: Literal["website_comment"] = "website_comment"
    comment_text: str = Field(..., min_length=1, max_length=2000)
    comment_id: str | None = None


class WebsiteRatingPayload(_WebsiteRef):
    type: Literal["website_rating"] = "website_rating"
    rating: int = Field(..., ge=1, le=5)
    rating_id: str | None = None


class UserFollowPayload(_Payload):
    type: Literal["user_follow"] = "user_follow"
    target_user_id: str = Field(..., min_length=1, max_length=128)
    target_user_display_name: str | None = None
    target_user_photo_url: str | None = None


class UserRegisterPayload(_Payload):
    type: Literal["user_register"] = "user_register"


class BookmarkCreatePayload(_WebsiteRef):
    type: Literal["bookmark_create"] = "bookmark_create"
    bookmark_collection_name: str = Field(..., min_length=1, max_length=128)


class ProfileUpdatePayload(_Payload):
    type: Literal["profile_update"] = "profile_update"
    fields: list[str] = []


class AnnouncementPayload(_Payload):
    type: Literal["announcement"] = "announcement"
    title: str = Field(..., min_length=1, max_length=256)
    message: str = Field(..., min_length=1, max_length=2000)
    action_url: str | None = None


ActivityPayload = Annotated[
    Union[
        WebsiteSubmitPayload,
        WebsiteLikePayload,
        WebsiteCommentPayload,
        WebsiteRatingPayload,
        UserFollowPayload,
        UserRegisterPayload,
        BookmarkCreatePayload,
        ProfileUpdatePayload,
        AnnouncementPayload,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(ActivityPayload)


def parse_payload(data: dict[str, Any]) -> Any:  # noqa: ANN401
    """Validate a raw payload dict into its typed variant.

    Raises:
        ValidationError: Unknown type or missing/invalid fields.
    """
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid activity payload: {errors}") from e
