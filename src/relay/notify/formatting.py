"""User-facing message texts.

Every string a user can read in Slack or a webhook response is built
here, so both surfaces word outcomes and errors the same way.

Source:
- src/relay/session/models.py (SessionOutcome)
"""

from typing import Optional

from src.relay.session.models import SessionOutcome


JULES_URL = "https://jules.google.com"
JULES_SETTINGS_URL = "https://jules.google.com/settings"

STARTING_PREVIEW_LENGTH = 50

REGISTER_TOKEN_MESSAGE = (
    "You need to register your Jules API token first. "
    "Use `/jules-token <your-api-key>` to get started."
)

NO_SOURCES_MESSAGE = (
    "No GitHub repositories found. "
    f"Please connect a repository in Jules first: {JULES_URL}"
)

EMPTY_PROMPT_MESSAGE = (
    "What would you like me to help you with? "
    "Please include a task description after mentioning me."
)


def format_outcome(outcome: SessionOutcome) -> str:
    """Format the single completion notification for a session.

    Example:
        >>> format_outcome(SessionOutcome(session_id="s1", timed_out=True))
        'Session s1 is still in progress. Check status at https://jules.google.com'
    """
    if outcome.timed_out or not outcome.pr_url:
        return (
            f"Session {outcome.session_id} is still in progress. "
            f"Check status at {JULES_URL}"
        )

    message = f"Task completed! Pull request created: {outcome.pr_url}"
    if outcome.pr_title:
        message = f"{message}\n*{outcome.pr_title}*"
    return message


def format_session_started(
    session_id: str,
    title: Optional[str],
    prompt: str,
    announce_update: bool = True,
) -> str:
    """Format the acknowledgement posted once a session is created.

    Falls back to the start of the prompt when Jules returned no title.
    """
    label = title or prompt[:STARTING_PREVIEW_LENGTH]
    message = f"Starting Jules session: {label}\nSession ID: {session_id}"
    if announce_update:
        message = f"{message}\n\nI'll update you when the task completes!"
    return message


def format_start_failure(error: Exception) -> str:
    return f"Failed to start Jules session: {_error_text(error)}"


def format_dm_failure(error: Exception) -> str:
    return f"Error: {_error_text(error)}"


def _error_text(error: Exception) -> str:
    return str(error) or "Unknown error"


def format_token_status(has_token: bool) -> str:
    if has_token:
        return (
            "You have a Jules API token registered. "
            "Use `/jules-token <new-token>` to update it."
        )
    return (
        "Usage: `/jules-token <your-jules-api-key>`\n"
        f"Get your API key from {JULES_SETTINGS_URL}"
    )


TOKEN_SAVED_MESSAGE = (
    "Your Jules API token has been saved securely. "
    "You can now @mention me with a task!"
)


def format_repo_status(repo: Optional[str]) -> str:
    if repo:
        return (
            f"Your Jules repository is set to `{repo}`. "
            "Use `/jules-repo <org/repo-name>` to update it "
            "or `/jules-repo clear` to reset."
        )
    return (
        "Usage: `/jules-repo <org/repo-name>`\n"
        "Example: `/jules-repo google/jules`"
    )


def format_repo_saved(repo: str) -> str:
    return f"Your Jules repository has been set to `{repo}`."


REPO_CLEARED_MESSAGE = (
    "Your Jules repository setting has been cleared. "
    "I will now use the first available repository."
)
