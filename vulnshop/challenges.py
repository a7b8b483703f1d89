"""Challenge registry and solve utilities.

The registry is constructed once at process start from the static
catalog and handed to every component that can solve a challenge.
Solving is one-shot: the solved flag flips under a lock, so concurrent
triggers of the same challenge produce exactly one notification.

Example:
    >>> registry = ChallengeRegistry.from_file(CHALLENGES_FILE)
    >>> registry.solve_if("uploadSizeChallenge", lambda: size > 100000)
    >>> registry.get("uploadSizeChallenge").solved
    True

Classes:
    Challenge: Catalog entry with mutable solved/disabled flags.
    ChallengeRegistry: Owner of all challenges and their state transitions.
    UnknownChallengeError: Lookup of a key that is not in the catalog.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import yaml

from vulnshop.config import (
    CHALLENGES_FILE,
    DISABLED_CHALLENGES,
    RUNTIME_ENV,
    safety_mode_active,
)
from vulnshop.notifications import ChallengeNotifier


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTION CLASSES
# =============================================================================

class UnknownChallengeError(KeyError):
    """Raised when a challenge key is not in the catalog."""
    pass


# =============================================================================
# CHALLENGE MODEL
# =============================================================================

@dataclass
class Challenge:
    """A one-shot-solvable flag for a specific exploit.

    Attributes:
        key: Stable identifier (e.g., "xxeFileDisclosureChallenge").
        name: Human-readable name.
        category: Vulnerability category.
        description: What the player has to do.
        difficulty: Star rating from 1 to 6.
        tutorial_order: Optional sequencing hint.
        disabled_env: Hosting environments where the challenge is switched off.
        solved: Set once the exploit has been observed.
        disabled: Feature-flag gate; disabled challenges never solve.
    """
    key: str
    name: str
    category: str = ""
    description: str = ""
    difficulty: int = 1
    tutorial_order: Optional[int] = None
    disabled_env: List[str] = field(default_factory=list)
    solved: bool = False
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "difficulty": self.difficulty,
            "tutorialOrder": self.tutorial_order,
            "solved": self.solved,
            "disabled": self.disabled,
        }


ChallengeRef = Union[Challenge, str]


# =============================================================================
# CHALLENGE REGISTRY
# =============================================================================

class ChallengeRegistry:
    """Process-wide owner of challenge state.

    Attributes:
        notifier: Receives one event per solved challenge.
    """

    def __init__(
        self,
        challenges: Iterable[Challenge],
        notifier: Optional[ChallengeNotifier] = None
    ) -> None:
        self._challenges: Dict[str, Challenge] = {c.key: c for c in challenges}
        self._lock = threading.Lock()
        self.notifier = notifier or ChallengeNotifier()

    @classmethod
    def from_definitions(
        cls,
        definitions: List[Dict[str, Any]],
        notifier: Optional[ChallengeNotifier] = None,
        disabled_keys: Optional[Iterable[str]] = None,
        runtime_env: Optional[str] = None,
        safety_mode: Optional[str] = None
    ) -> "ChallengeRegistry":
        """Build a registry from raw catalog entries.

        A challenge starts disabled when its key is listed in
        disabled_keys, or when safety mode is active and the runtime
        environment appears in its disabledEnv list.
        """
        disabled_keys = set(DISABLED_CHALLENGES if disabled_keys is None else disabled_keys)
        runtime_env = RUNTIME_ENV if runtime_env is None else runtime_env
        safe = safety_mode_active(safety_mode, runtime_env)

        challenges = []
        for entry in definitions:
            disabled_env = list(entry.get("disabledEnv") or [])
            challenge = Challenge(
                key=entry["key"],
                name=entry["name"],
                category=entry.get("category", ""),
                description=entry.get("description", ""),
                difficulty=int(entry.get("difficulty", 1)),
                tutorial_order=entry.get("tutorialOrder"),
                disabled_env=disabled_env,
            )
            challenge.disabled = challenge.key in disabled_keys or (
                safe and runtime_env in disabled_env
            )
            if challenge.disabled:
                logger.info(f"Challenge {challenge.key} is disabled")
            challenges.append(challenge)

        return cls(challenges, notifier=notifier)

    @classmethod
    def from_file(cls, path: str = CHALLENGES_FILE, **kwargs: Any) -> "ChallengeRegistry":
        """Load the static catalog from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            definitions = yaml.safe_load(f) or []
        logger.debug(f"Loaded {len(definitions)} challenge definitions from {path}")
        return cls.from_definitions(definitions, **kwargs)

    def get(self, challenge: ChallengeRef) -> Challenge:
        """Resolve a challenge or key to the registry's instance."""
        key = challenge.key if isinstance(challenge, Challenge) else challenge
        try:
            return self._challenges[key]
        except KeyError:
            raise UnknownChallengeError(key) from None

    def all(self) -> List[Challenge]:
        return list(self._challenges.values())

    def is_enabled(self, challenge: ChallengeRef) -> bool:
        """True unless the challenge is explicitly disabled."""
        return not self.get(challenge).disabled

    def not_solved(self, challenge: ChallengeRef) -> bool:
        challenge = self.get(challenge)
        return challenge.disabled is False and challenge.solved is False

    def solve(self, challenge: ChallengeRef) -> bool:
        """Mark the challenge solved and notify.

        Returns:
            True only for the call that performed the transition.
        """
        challenge = self.get(challenge)
        with self._lock:
            if challenge.disabled or challenge.solved:
                return False
            challenge.solved = True

        logger.info(f"Solved challenge {challenge.name} ({challenge.key})")
        self.notifier.notify(challenge)
        return True

    def solve_if(self, challenge: ChallengeRef, predicate: Callable[[], bool]) -> bool:
        """Solve the challenge if the predicate holds.

        Predicate exceptions are swallowed and count as "not solved", so
        this is safe to call on every request.

        Returns:
            True only for the call that performed the transition.
        """
        challenge = self.get(challenge)
        if not self.not_solved(challenge):
            return False
        try:
            matched = bool(predicate())
        except Exception as e:
            logger.debug(f"Solve predicate for {challenge.key} raised: {e}")
            return False
        if not matched:
            return False
        return self.solve(challenge)

    def to_dict(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self._challenges.values()]
