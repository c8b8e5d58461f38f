"""Pydantic models for the signaling envelopes exchanged over the relay."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from signaling.errors import MalformedMessageError, UnknownMessageTypeError

CLIENT_ID = "clientId"
REQUEST_USER_LIST = "requestUserList"
UPDATE_USER_LIST = "update-user-list"
MEDIA_OFFER = "mediaOffer"
MEDIA_ANSWER = "mediaAnswer"
ICE_CANDIDATE = "iceCandidate"
HANGUP = "hangup"

MESSAGE_TYPES = frozenset(
    {
        CLIENT_ID,
        REQUEST_USER_LIST,
        UPDATE_USER_LIST,
        MEDIA_OFFER,
        MEDIA_ANSWER,
        ICE_CANDIDATE,
        HANGUP,
    }
)


class _Frozen(BaseModel):
    # Unknown keys are kept so decoding never loses fields.
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")


class SessionDescription(_Frozen):
    """An SDP offer or answer as produced by the browser API."""

    type: str = Field(min_length=1)
    sdp: str = Field(min_length=1)


class IceCandidatePayload(_Frozen):
    candidate: str = Field(min_length=1)
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_m_line_index: int | None = Field(default=None, alias="sdpMLineIndex")


class ClientIdData(_Frozen):
    client_id: str = Field(alias="clientId", min_length=1)


class UserListData(_Frozen):
    user_ids: list[str] = Field(alias="userIds")


class ClientIdMessage(_Frozen):
    type: Literal["clientId"] = CLIENT_ID
    data: ClientIdData


class RequestUserList(_Frozen):
    type: Literal["requestUserList"] = REQUEST_USER_LIST
    sender: str | None = Field(default=None, alias="from")


class UpdateUserList(_Frozen):
    type: Literal["update-user-list"] = UPDATE_USER_LIST
    data: UserListData


class MediaOffer(_Frozen):
    type: Literal["mediaOffer"] = MEDIA_OFFER
    sender: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    offer: SessionDescription


class MediaAnswer(_Frozen):
    type: Literal["mediaAnswer"] = MEDIA_ANSWER
    sender: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    answer: SessionDescription


class IceCandidate(_Frozen):
    type: Literal["iceCandidate"] = ICE_CANDIDATE
    sender: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    candidate: IceCandidatePayload


class Hangup(_Frozen):
    type: Literal["hangup"] = HANGUP
    sender: str = Field(alias="from", min_length=1)
    # Optional: the relay resolves the counterpart from the open call.
    to: str | None = None


SignalingMessage = Annotated[
    Union[
        ClientIdMessage,
        RequestUserList,
        UpdateUserList,
        MediaOffer,
        MediaAnswer,
        IceCandidate,
        Hangup,
    ],
    Field(discriminator="type"),
]

PeerMessage = Union[MediaOffer, MediaAnswer, IceCandidate, Hangup]

_ADAPTER: TypeAdapter[SignalingMessage] = TypeAdapter(SignalingMessage)


def decode_message(raw: str | bytes | dict[str, Any]) -> SignalingMessage:
    """Parse and validate one envelope.

    Raises:
        UnknownMessageTypeError: if the ``type`` tag is missing or not recognised.
        MalformedMessageError: if the payload is not a JSON object or a required
            field for its type is absent.
    """

    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedMessageError(f"Envelope is not valid JSON: {exc.msg}") from exc
    else:
        payload = raw

    if not isinstance(payload, dict):
        raise MalformedMessageError("Envelope must be a JSON object.")

    message_type = payload.get("type")
    if message_type not in MESSAGE_TYPES:
        raise UnknownMessageTypeError(message_type)

    try:
        return _ADAPTER.validate_python(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise MalformedMessageError(f"Invalid {message_type} message: {fields}") from exc


def encode_message(message: BaseModel) -> str:
    return message.model_dump_json(by_alias=True, exclude_none=True)


def client_id_message(client_id: str) -> ClientIdMessage:
    return ClientIdMessage(data=ClientIdData(client_id=client_id))


def user_list_message(user_ids: list[str]) -> UpdateUserList:
    return UpdateUserList(data=UserListData(user_ids=user_ids))


def hangup_message(sender: str, to: str | None) -> Hangup:
    return Hangup(sender=sender, to=to)
