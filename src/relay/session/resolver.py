"""Source resolution for new sessions.

Picks the repository a session runs against from the sources an API key
can access and the user's optional preferred-repository hint.

Matching rules, checked per candidate in this order:
1. source id equals the hint
2. source id equals "github.com/" + hint
3. source name equals the hint
4. source name ends with "/" + hint

Candidates are scanned in API order and the first candidate matching any
rule wins, so a later source matching an earlier rule does not beat an
earlier source matching a later rule. Without a hint, or when nothing
matches, the first source is used.
"""

from typing import Optional, Sequence

from src.relay.jules.models import Source


GITHUB_HOST_PREFIX = "github.com/"


def matches_preference(source: Source, preferred: str) -> bool:
    """Return True if the source satisfies any of the matching rules."""
    return (
        source.id == preferred
        or source.id == f"{GITHUB_HOST_PREFIX}{preferred}"
        or source.name == preferred
        or source.name.endswith(f"/{preferred}")
    )


def select_source(sources: Sequence[Source], preferred: Optional[str]) -> Source:
    """Select the source a session should run against.

    The sequence is never modified.

    Args:
        sources: Non-empty sources in API (priority) order.
        preferred: Optional repository hint such as "org/name".

    Returns:
        The first source matching the hint, else the first source.

    Raises:
        ValueError: If sources is empty. Callers check for this first
                    and report NoSourcesAvailableError instead.

    Example:
        >>> sources = [Source(name="a/x", id="a/x"), Source(name="a/y", id="a/y")]
        >>> select_source(sources, "y").id
        'a/y'
    """
    if not sources:
        raise ValueError("select_source requires at least one source")

    if preferred:
        for source in sources:
            if matches_preference(source, preferred):
                return source

    return sources[0]
