"""Unit tests for the due summary job handler."""

import json
from unittest.mock import patch

from rebabel_srs.models.review import DueForOwnerResponse, SetDueBreakdown
from rebabel_srs.services.srs_repository import SrsRepositoryError


class TestDueSummaryHandler:
    """Tests for the scheduled due summary."""

    def test_summarizes_each_owner(self, lambda_context):
        responses = {
            "user-1": DueForOwnerResponse(
                total_due=3,
                by_set=[
                    SetDueBreakdown(set_id="s1", set_title="N5", due_count=1),
                    SetDueBreakdown(set_id="s2", set_title="N4", due_count=2),
                ],
            ),
            "user-2": DueForOwnerResponse(total_due=0),
        }

        with patch("rebabel_srs.jobs.due_summary_handler.due_service") as mock_due_service:
            mock_due_service.due_for_owner.side_effect = lambda owner_id, now, count_only: responses[owner_id]

            from rebabel_srs.jobs.due_summary_handler import handler
            response = handler({"owner_ids": ["user-1", "user-2"]}, lambda_context)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["error_count"] == 0
        assert [o["owner_id"] for o in body["owners"]] == ["user-1", "user-2"]
        assert body["owners"][0]["total_due"] == 3
        assert body["owners"][0]["by_set"][1] == {"set_id": "s2", "set_title": "N4", "due_count": 2}
        assert body["owners"][1]["by_set"] == []
        for call in mock_due_service.due_for_owner.call_args_list:
            assert call.kwargs["count_only"] is True

    def test_owner_failure_is_counted(self, lambda_context):
        def due_for_owner(owner_id, now, count_only):
            if owner_id == "broken":
                raise SrsRepositoryError("Failed to list sets")
            return DueForOwnerResponse(total_due=1)

        with patch("rebabel_srs.jobs.due_summary_handler.due_service") as mock_due_service:
            mock_due_service.due_for_owner.side_effect = due_for_owner

            from rebabel_srs.jobs.due_summary_handler import handler
            response = handler({"owner_ids": ["broken", "user-1"]}, lambda_context)

        body = json.loads(response["body"])
        assert body["error_count"] == 1
        assert [o["owner_id"] for o in body["owners"]] == ["user-1"]

    def test_unexpected_error_does_not_stop_batch(self, lambda_context):
        def due_for_owner(owner_id, now, count_only):
            if owner_id == "user-2":
                raise RuntimeError("unexpected")
            return DueForOwnerResponse(total_due=2)

        with patch("rebabel_srs.jobs.due_summary_handler.due_service") as mock_due_service:
            mock_due_service.due_for_owner.side_effect = due_for_owner

            from rebabel_srs.jobs.due_summary_handler import handler
            response = handler({"owner_ids": ["user-1", "user-2", "user-3"]}, lambda_context)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["error_count"] == 1
        assert [o["owner_id"] for o in body["owners"]] == ["user-1", "user-3"]

    def test_empty_event(self, lambda_context):
        with patch("rebabel_srs.jobs.due_summary_handler.due_service") as mock_due_service:
            from rebabel_srs.jobs.due_summary_handler import handler
            response = handler({}, lambda_context)

        assert json.loads(response["body"]) == {"owners": [], "error_count": 0}
        mock_due_service.due_for_owner.assert_not_called()
