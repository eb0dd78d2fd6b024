"""Async HTTP client for the attempt lifecycle API."""

from typing import Any
from uuid import UUID

import httpx

from examdesk.models.attempt import AttemptStatus
from examdesk.schemas.attempt import (
    AnswerOut,
    AnswerSaveResponse,
    AttemptListItem,
    AttemptOut,
    AttemptResultOut,
    AttemptStateOut,
    SubmitResponse,
)
from examdesk.schemas.exam import QuestionOut


class AttemptApiError(Exception):
    """Non-2xx response, decoded from the error envelope."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Any | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(f"{status_code} {error_code}: {message}")


class AttemptApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` for one bearer token.

    Transport failures propagate as ``httpx.HTTPError``; error responses raise
    ``AttemptApiError``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        api_prefix: str = "/v1",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._prefix = api_prefix.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AttemptApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        response = await self._client.request(
            method, f"{self._prefix}{path}", json=json, params=params
        )
        if response.is_error:
            raise _api_error(response)
        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        return response.json()

    async def list_attempts(
        self,
        status: AttemptStatus | None = None,
        exam_id: UUID | None = None,
    ) -> list[AttemptListItem]:
        params = {}
        if status is not None:
            params["status"] = status.value
        if exam_id is not None:
            params["exam_id"] = str(exam_id)
        data = await self._request("GET", "/attempts", params=params)
        return [AttemptListItem.model_validate(a) for a in data]

    async def get_attempt(self, attempt_id: UUID) -> AttemptStateOut:
        data = await self._request("GET", f"/attempts/{attempt_id}")
        return AttemptStateOut.model_validate(data)

    async def start_attempt(self, exam_id: UUID) -> AttemptStateOut:
        data = await self._request("POST", f"/exams/{exam_id}/attempts")
        return AttemptStateOut.model_validate(data)

    async def list_questions(self, exam_id: UUID) -> list[QuestionOut]:
        data = await self._request("GET", f"/exams/{exam_id}/questions")
        return [QuestionOut.model_validate(q) for q in data]

    async def save_answer(
        self,
        attempt_id: UUID,
        question_id: UUID,
        answer_text: str,
        client_seq: int | None = None,
    ) -> AnswerSaveResponse:
        data = await self._request(
            "PUT",
            f"/attempts/{attempt_id}/answers/{question_id}",
            json={"answer_text": answer_text, "client_seq": client_seq},
        )
        return AnswerSaveResponse.model_validate(data)

    async def list_answers(self, attempt_id: UUID) -> list[AnswerOut]:
        data = await self._request("GET", f"/attempts/{attempt_id}/answers")
        return [AnswerOut.model_validate(a) for a in data]

    async def submit_attempt(self, attempt_id: UUID) -> SubmitResponse:
        data = await self._request("POST", f"/attempts/{attempt_id}/submit")
        return SubmitResponse.model_validate(data)

    async def update_attempt_status(
        self, attempt_id: UUID, status: AttemptStatus
    ) -> AttemptOut:
        data = await self._request(
            "PATCH", f"/attempts/{attempt_id}/status", json={"status": status.value}
        )
        return AttemptOut.model_validate(data)

    async def get_result(self, attempt_id: UUID) -> AttemptResultOut:
        data = await self._request("GET", f"/attempts/{attempt_id}/result")
        return AttemptResultOut.model_validate(data)


def _api_error(response: httpx.Response) -> AttemptApiError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and "error_code" in body:
        return AttemptApiError(
            response.status_code,
            body["error_code"],
            body.get("message") or "",
            body.get("details"),
        )
    return AttemptApiError(response.status_code, "HTTP_ERROR", response.text)
