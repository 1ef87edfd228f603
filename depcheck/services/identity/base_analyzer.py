"""Base analyzer abstract class for identity analyzers.

Analyzer subclasses implement ``async analyze(dependency) -> None`` and add
evidence to the dependency in place. Dependency-scoped problems are handled
inside ``analyze()``; only errors the caller must see (such as malformed
descriptors) propagate. ``close()`` is called once at the end of a run.
"""

from abc import ABC, abstractmethod

from depcheck.services.identity.models import Dependency


class BaseAnalyzer(ABC):
    """Abstract base class for dependency identity analyzers."""

    name: str = "base_analyzer"
    description: str = ""
    supported_extensions: frozenset[str] = frozenset()

    @property
    def is_enabled(self) -> bool:
        return True

    def supports(self, dependency: Dependency) -> bool:
        """Check whether the dependency's file type is handled by this analyzer."""
        if not self.supported_extensions:
            return True
        return dependency.extension in self.supported_extensions

    @abstractmethod
    async def analyze(self, dependency: Dependency) -> None:
        """Add identity evidence to a dependency."""
        pass

    def close(self) -> None:
        """Release resources and report end-of-run state."""
        pass
