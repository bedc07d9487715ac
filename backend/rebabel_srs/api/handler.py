"""HTTP API handler for the Rebabel SRS scheduling engine."""

import json
from datetime import date, datetime, timezone
from typing import Optional, Union

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.event_handler import APIGatewayHttpResolver, Response, content_types
from aws_lambda_powertools.event_handler.exceptions import NotFoundError, UnauthorizedError
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from ..models.review import LearnNewQuotaResponse, ReviewRequest
from ..models.srs import DEFAULT_SCOPE, SetLevelRequest
from ..models.study_set import SrsEnabledCountResponse, SrsToggleRequest
from ..services.admission import DEFAULT_DAILY_LIMIT, AdmissionController, AdmissionError
from ..services.due_service import DueAggregationService, InvalidLimitError
from ..services.review_service import InvalidLevelError, ReviewService
from ..services.srs_repository import SetNotFoundError, SrsRepository

logger = Logger()
tracer = Tracer()
app = APIGatewayHttpResolver()

DEFAULT_TIMEZONE = "Asia/Tokyo"

# Initialize services
repository = SrsRepository()
due_service = DueAggregationService(repository=repository)
admission_controller = AdmissionController(repository=repository)
review_service = ReviewService(repository=repository)


def get_user_id_from_context() -> str:
    """Extract user_id from JWT claims in request context.

    Returns:
        User ID from JWT claims.

    Raises:
        UnauthorizedError: If user_id cannot be extracted.
    """
    try:
        # For HTTP API with JWT Authorizer
        claims = app.current_event.request_context.authorizer
        if claims and "jwt" in claims:
            return claims["jwt"]["claims"]["sub"]
        if claims and "sub" in claims:
            return claims["sub"]
        raise UnauthorizedError("Unable to extract user ID from token")
    except (KeyError, TypeError, AttributeError) as e:
        logger.error(f"Failed to extract user_id: {e}")
        raise UnauthorizedError("Unable to extract user ID from token")


def _bad_request(message: str, details=None) -> Response:
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return Response(
        status_code=400,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps(body, default=str),
    )


def _query_params() -> dict:
    return app.current_event.query_string_parameters or {}


def _scope_param(params: dict) -> str:
    return (params.get("scope") or DEFAULT_SCOPE).strip() or DEFAULT_SCOPE


def _parse_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name} parameter - must be an integer")


def _parse_as_of(value: Optional[str]) -> Union[datetime, date]:
    """Read as_of as a local date (YYYY-MM-DD) or an ISO-8601 timestamp; default now."""
    if not value:
        return datetime.now(timezone.utc)
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid as_of parameter: {value}")


# =============================================================================
# Due Endpoints
# =============================================================================


@app.get("/srs/due")
@tracer.capture_method
def get_due_for_owner():
    """Get due items across all SRS-enabled sets of the current user."""
    user_id = get_user_id_from_context()
    params = _query_params()
    count_only = params.get("count_only", "false").lower() == "true"
    logger.info(f"Getting due items for user_id: {user_id} (count_only={count_only})")

    try:
        response = due_service.due_for_owner(
            owner_id=user_id,
            now=datetime.now(timezone.utc),
            count_only=count_only,
            scope=_scope_param(params),
        )
        return response.model_dump(mode="json", exclude={"items"} if count_only else None)
    except Exception as e:
        logger.error(f"Error getting due items: {e}")
        raise


@app.get("/srs/sets/<set_id>/due")
@tracer.capture_method
def get_due_for_set(set_id: str):
    """Get due items of one set."""
    user_id = get_user_id_from_context()
    logger.info(f"Getting due items of set {set_id} for user_id: {user_id}")

    try:
        response = due_service.due_for_set(
            owner_id=user_id,
            set_id=set_id,
            now=datetime.now(timezone.utc),
            scope=_scope_param(_query_params()),
        )
        return response.model_dump(mode="json")
    except SetNotFoundError:
        raise NotFoundError(f"Set not found: {set_id}")
    except Exception as e:
        logger.error(f"Error getting due items of set: {e}")
        raise


@app.get("/srs/sets/<set_id>/schedule")
@tracer.capture_method
def get_set_schedule(set_id: str):
    """Get when each in-cycle item of a set next becomes due."""
    user_id = get_user_id_from_context()
    logger.info(f"Getting schedule of set {set_id} for user_id: {user_id}")

    try:
        response = due_service.schedule_for_set(
            owner_id=user_id,
            set_id=set_id,
            now=datetime.now(timezone.utc),
            scope=_scope_param(_query_params()),
        )
        return response.model_dump(mode="json")
    except SetNotFoundError:
        raise NotFoundError(f"Set not found: {set_id}")
    except Exception as e:
        logger.error(f"Error getting set schedule: {e}")
        raise


# =============================================================================
# Set Endpoints
# =============================================================================


@app.get("/srs/sets/count")
@tracer.capture_method
def count_srs_enabled_sets():
    """Count the current user's sets that have SRS enabled."""
    user_id = get_user_id_from_context()
    logger.info(f"Counting SRS-enabled sets for user_id: {user_id}")

    try:
        sets = repository.list_srs_enabled_sets(user_id)
        return SrsEnabledCountResponse(count=len(sets)).model_dump(mode="json")
    except Exception as e:
        logger.error(f"Error counting SRS-enabled sets: {e}")
        raise


@app.put("/srs/sets/<set_id>/srs")
@tracer.capture_method
def toggle_set_srs(set_id: str):
    """Turn SRS scheduling on or off for a set."""
    user_id = get_user_id_from_context()
    logger.info(f"Toggling SRS for set {set_id}, user_id: {user_id}")

    try:
        body = app.current_event.json_body
        request = SrsToggleRequest(**body)
    except ValidationError as e:
        logger.warning(f"Validation error: {e}")
        return _bad_request("Invalid request", e.errors())
    except (json.JSONDecodeError, TypeError):
        return _bad_request("Invalid JSON body")

    try:
        study_set = repository.set_srs_enabled(user_id, set_id, request.srs_enabled)
        return study_set.to_response()
    except SetNotFoundError:
        raise NotFoundError(f"Set not found: {set_id}")
    except Exception as e:
        logger.error(f"Error toggling SRS: {e}")
        raise


# =============================================================================
# Learn-New Endpoints
# =============================================================================


@app.get("/srs/sets/<set_id>/learn")
@tracer.capture_method
def get_learn_new_candidates(set_id: str):
    """Get items of a set that have not entered the review cycle."""
    user_id = get_user_id_from_context()
    params = _query_params()

    try:
        limit = _parse_int(params.get("limit"), "limit")
    except ValueError as e:
        return _bad_request(str(e))
    if limit is None:
        return _bad_request("Missing limit parameter")

    logger.info(f"Getting up to {limit} new items of set {set_id} for user_id: {user_id}")

    try:
        response = due_service.learn_new_candidates(
            owner_id=user_id,
            set_id=set_id,
            limit=limit,
            scope=_scope_param(params),
        )
        return response.model_dump(mode="json")
    except InvalidLimitError as e:
        return _bad_request(str(e))
    except SetNotFoundError:
        raise NotFoundError(f"Set not found: {set_id}")
    except Exception as e:
        logger.error(f"Error getting learn-new candidates: {e}")
        raise


@app.get("/srs/sets/<set_id>/learn/quota")
@tracer.capture_method
def get_learn_new_quota(set_id: str):
    """Get how many new items may still be introduced today."""
    user_id = get_user_id_from_context()
    params = _query_params()

    try:
        cap = _parse_int(params.get("cap"), "cap")
        requested = _parse_int(params.get("requested"), "requested") or 0
        as_of = _parse_as_of(params.get("as_of"))
    except ValueError as e:
        return _bad_request(str(e))

    try:
        study_set = repository.get_owned_set(user_id, set_id)
        if cap is None:
            cap = study_set.daily_new_limit or DEFAULT_DAILY_LIMIT

        result = admission_controller.admit(
            owner_id=user_id,
            set_id=set_id,
            requested_count=requested,
            cap=cap,
            as_of=as_of,
            timezone_name=params.get("timezone") or DEFAULT_TIMEZONE,
            kind=params.get("kind", "vocabulary"),
            scope=_scope_param(params),
        )
        return LearnNewQuotaResponse(
            learned_today=result.learned_today,
            remaining=result.remaining,
            admitted=result.admitted,
            daily_limit=result.daily_limit,
            limit_reached=result.limit_reached,
        ).model_dump(mode="json")
    except AdmissionError as e:
        return _bad_request(str(e))
    except SetNotFoundError:
        raise NotFoundError(f"Set not found: {set_id}")
    except Exception as e:
        logger.error(f"Error computing learn-new quota: {e}")
        raise


# =============================================================================
# Review Endpoints
# =============================================================================


@app.post("/srs/items/<item_id>/review")
@tracer.capture_method
def submit_review(item_id: str):
    """Apply a review outcome to an item."""
    user_id = get_user_id_from_context()
    logger.info(f"Submitting review for item {item_id}, user_id: {user_id}")

    try:
        body = app.current_event.json_body
        request = ReviewRequest(**body)
    except ValidationError as e:
        logger.warning(f"Validation error: {e}")
        return _bad_request("Invalid request", e.errors())
    except (json.JSONDecodeError, TypeError):
        return _bad_request("Invalid JSON body")

    try:
        result = review_service.apply_review(
            owner_id=user_id,
            item_id=item_id,
            outcome=request.outcome,
            now=datetime.now(timezone.utc),
            scope=request.scope,
        )
        return result.to_response().model_dump(mode="json")
    except Exception as e:
        logger.error(f"Error submitting review: {e}")
        raise


@app.post("/srs/items/<item_id>/entry")
@tracer.capture_method
def create_entry(item_id: str):
    """Write an explicit SRS level for an item."""
    user_id = get_user_id_from_context()
    logger.info(f"Creating SRS entry for item {item_id}, user_id: {user_id}")

    try:
        body = app.current_event.json_body
        request = SetLevelRequest(**body)
    except ValidationError as e:
        logger.warning(f"Validation error: {e}")
        return _bad_request("Invalid request", e.errors())
    except (json.JSONDecodeError, TypeError):
        return _bad_request("Invalid JSON body")

    try:
        result = review_service.set_level(
            owner_id=user_id,
            item_id=item_id,
            level=request.level,
            now=datetime.now(timezone.utc),
            scope=request.scope,
        )
        return Response(
            status_code=201,
            content_type=content_types.APPLICATION_JSON,
            body=json.dumps(result.to_response().model_dump(mode="json")),
        )
    except InvalidLevelError as e:
        return _bad_request(str(e))
    except Exception as e:
        logger.error(f"Error creating SRS entry: {e}")
        raise


# =============================================================================
# Lambda Handler
# =============================================================================


@logger.inject_lambda_context(correlation_id_path=correlation_paths.API_GATEWAY_HTTP)
@tracer.capture_lambda_handler
def handler(event: dict, context: LambdaContext) -> dict:
    """Lambda handler for API Gateway events."""
    return app.resolve(event, context)
