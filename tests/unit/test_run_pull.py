"""
Unit tests for the pull entry point
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import ApiError, ValidationError
from scripts import run_pull


class TestParseArguments:
    """Test command line handling"""

    def test_options_and_output_path(self):
        options, output_path = run_pull.parse_arguments(
            ["run_pull.py", '{"shop_name": "s", "oauth_token": "t"}', "out.csv"]
        )

        assert options == {"shop_name": "s", "oauth_token": "t"}
        assert output_path == "out.csv"

    def test_wrong_argument_count(self):
        with pytest.raises(ValidationError):
            run_pull.parse_arguments(["run_pull.py"])

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            run_pull.parse_arguments(["run_pull.py", "{not json", "out.csv"])

        assert "not valid JSON" in exc_info.value.message


class TestMain:
    """Test exit codes and output streams"""

    def test_failure_prints_envelope(self, capsys):
        with patch.object(run_pull.sys, "argv", ["run_pull.py"]):
            exit_code = run_pull.main()

        captured = capsys.readouterr()
        envelope = json.loads(captured.err.strip().splitlines()[-1])
        assert exit_code == 1
        assert envelope["error_code"] == "preprocess_validation_error"
        assert captured.out == ""

    def test_api_failure_prints_envelope(self, capsys):
        with patch.object(run_pull, "run_pull", AsyncMock(side_effect=ApiError("rejected"))):
            exit_code = run_pull.main()

        envelope = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert exit_code == 1
        assert envelope == {"error_code": "api_response_error", "error_message": "rejected"}

    def test_success_prints_stats(self, capsys):
        result = {"rows_written": 2, "fields": ["id", "item_group_id"], "stats": {}}
        with patch.object(run_pull, "run_pull", AsyncMock(return_value=result)):
            exit_code = run_pull.main()

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out) == result
