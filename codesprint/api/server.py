from typing import Any, Optional, Tuple

from flask import Flask, Response, jsonify, request

from ..engine.errors import NotFoundError, PoolSaturatedError, ValidationError
from ..engine.executor import ExecutionClient
from ..engine.intake import SubmissionService
from ..engine.leaderboard import LeaderboardMaintainer
from ..engine.repository import Repository
from ..utils.logger_config import get_logger

logger = get_logger("server")


# Helper functions
def success_response(data: Any = None, message: str = "Success") -> Response:
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in response
        message: Success message string

    Returns:
        Flask Response object with success status
    """
    response = {
        "status": "success",
        "message": message
    }
    if data is not None:
        response["data"] = data
    return jsonify(response)


def error_response(message: str, status_code: int = 400) -> Tuple[Response, int]:
    """
    Create a standardized error response.

    Args:
        message: Error message string
        status_code: HTTP status code (default: 400)

    Returns:
        Tuple of (Flask Response object, status code)
    """
    response = {
        "status": "error",
        "message": message
    }
    return jsonify(response), status_code


def create_app(
    service: SubmissionService,
    repository: Repository,
    executor: Optional[ExecutionClient] = None,
    leaderboard: Optional[LeaderboardMaintainer] = None,
) -> Flask:
    """
    Build the Flask application around an already wired grading stack.

    Credentials are handled upstream; the caller's user id arrives in the
    X-User-Id header.
    """
    app = Flask(__name__)
    leaderboard = leaderboard or LeaderboardMaintainer(repository)

    @app.route("/api/submissions/create", methods=["POST"])
    def create_submission():
        """
        Submit code for grading.

        Request format:
        {
            "contest_id": "...",
            "problem_id": "...",
            "language": "cpp",
            "code": "..."
        }

        Returns:
            The new submission id with status "pending"; grading continues in the background
        """
        user_id = request.headers.get("X-User-Id", "")
        if not user_id:
            return error_response("Unauthorized", 401)

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response("Invalid request body", 400)

        try:
            result = service.submit(
                user_id=user_id,
                contest_id=str(data.get("contest_id", "")),
                problem_id=str(data.get("problem_id", "")),
                language=data.get("language") or "",
                code=data.get("code") or "",
            )
        except ValidationError as e:
            return error_response(str(e), 400)
        except NotFoundError as e:
            return error_response(str(e), 404)
        except PoolSaturatedError as e:
            return error_response(f"Grading queue is full, try again later: {e}", 503)
        except Exception as e:
            logger.error(f"Failed to create submission: {e}", exc_info=True)
            return error_response(f"Failed to create submission: {str(e)}", 500)

        return success_response(result, "Submission queued for grading")

    @app.route("/api/submissions/get/<submission_id>", methods=["GET"])
    def get_submission(submission_id: str):
        """
        Get a submission by ID.

        Query Parameters:
            include_code: If "true", includes source code in response
        """
        include_code = request.args.get("include_code", "false").lower() == "true"
        submission = repository.get_submission(submission_id, include_code=include_code)
        if submission is None:
            return error_response(f"Submission with ID {submission_id} not found", 404)
        return success_response(submission.to_dict(include_code=include_code))

    @app.route("/api/submissions/list/<contest_id>", methods=["GET"])
    def list_submissions(contest_id: str):
        """
        List submissions in a contest, newest first.

        Query Parameters:
            user_id: Filter by user (optional)
        """
        user_id = request.args.get("user_id")
        submissions = repository.list_user_submissions(contest_id, user_id)
        return success_response([s.to_dict() for s in submissions])

    @app.route("/api/leaderboard/get/<contest_id>", methods=["GET"])
    def get_leaderboard(contest_id: str):
        if repository.get_contest(contest_id) is None:
            return error_response(f"Contest with ID {contest_id} not found", 404)
        entries = leaderboard.leaderboard(contest_id)
        return success_response([entry.to_dict() for entry in entries])

    @app.route("/api/system/judge-status", methods=["GET"])
    def check_judge_status():
        if executor is None:
            return error_response("No judge configured", 503)
        connected = executor.check_connection()
        return success_response({"connected": connected, "url": executor.base_url})

    logger.info("Created Flask application")
    return app


def run_api(app: Flask, host: str = "0.0.0.0", port: int = 8080, debug: bool = False) -> None:
    """Run the Flask development server"""
    logger.info(f"Starting API server on {host}:{port}")
    # threaded: grading runs on the pool, request threads only enqueue
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)
