"""
Holder for the active Claude client configuration.

The holder is created once per process and handed to every component that
needs credentials. Replacing the configuration notifies subscribers
synchronously; the new value is visible to the next request.
"""

from typing import Any, Mapping, Optional, Union

from ..models.anthropic import ClaudeConfiguration
from ..utils.loguru_utils import LoguruLogger
from .config import Settings
from .events import Emitter


logger = LoguruLogger("configuration")

ConfigurationInput = Union[ClaudeConfiguration, Mapping[str, Any]]


class ConfigurationHolder:
    """Stores the current ``ClaudeConfiguration`` and announces changes."""

    def __init__(self, configuration: Optional[ConfigurationInput] = None):
        self._configuration = ClaudeConfiguration()
        self.on_configuration_changed: Emitter[None] = Emitter("configuration_changed")
        if configuration is not None:
            self._configuration = self._coerce(configuration)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfigurationHolder":
        """Seed a holder from process settings."""
        return cls(settings.get_claude_configuration())

    @property
    def configuration(self) -> ClaudeConfiguration:
        return self._configuration

    def configure(self, configuration: Optional[ConfigurationInput]) -> None:
        """
        Replace the configuration wholesale and notify listeners.

        Mappings that fail validation are kept as given (minus unknown keys)
        so that a bad settings value never breaks the caller. Anything that
        is not a mapping leaves the holder unconfigured.
        """
        self._configuration = self._coerce(configuration)
        logger.debug(
            "Claude configuration updated",
            model=self._configuration.model,
            configured=self.is_configured(),
        )
        self.on_configuration_changed.fire(None)

    def is_configured(self) -> bool:
        return bool(self._configuration.api_key)

    @staticmethod
    def _coerce(configuration: ConfigurationInput) -> ClaudeConfiguration:
        if isinstance(configuration, ClaudeConfiguration):
            return configuration
        if not isinstance(configuration, Mapping):
            logger.warning(
                f"Ignoring Claude configuration of type {type(configuration).__name__}; client is unconfigured"
            )
            return ClaudeConfiguration()

        try:
            return ClaudeConfiguration.model_validate(dict(configuration))
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid Claude configuration, storing as given ({type(e).__name__})")

        values = {}
        for name, field in ClaudeConfiguration.model_fields.items():
            for key in (name, field.alias):
                if key and configuration.get(key) is not None:
                    values[name] = configuration[key]
                    break
        return ClaudeConfiguration.model_construct(**values)
