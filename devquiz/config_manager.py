"""
Configuration manager for devquiz settings.
"""
import logging
from typing import Optional, Dict, Any, List
from pathlib import Path
import os

from .models import TimerSettings


class ConfigManager:
    """Manages timer, question bank and storage settings."""

    # Default configuration values
    DEFAULT_TIMER_ENABLED = True
    DEFAULT_TIMER_DURATION = 15
    DEFAULT_WARNING_THRESHOLD = 5
    DEFAULT_QUESTION_DIRECTORY = None  # Bundled bank only
    DEFAULT_HIGH_SCORE_FILE = "./data/high_score.json"

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._timer_settings = TimerSettings(
            enabled=self.DEFAULT_TIMER_ENABLED,
            duration_seconds=self.DEFAULT_TIMER_DURATION,
            warning_threshold_seconds=self.DEFAULT_WARNING_THRESHOLD
        )
        self._question_directory: Optional[str] = self.DEFAULT_QUESTION_DIRECTORY
        self._high_score_file = self.DEFAULT_HIGH_SCORE_FILE

    def get_timer_settings(self) -> TimerSettings:
        """
        Get current timer settings.

        Returns:
            A copy of the TimerSettings in effect
        """
        return TimerSettings(
            enabled=self._timer_settings.enabled,
            duration_seconds=self._timer_settings.duration_seconds,
            warning_threshold_seconds=self._timer_settings.warning_threshold_seconds
        )

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the sections of a parsed config.json.

        Invalid values are skipped with a logged error; defaults stay in place.

        Returns:
            List of error messages for settings that were rejected
        """
        errors = []
        timer_config = config.get('timer', {})
        quiz_config = config.get('quiz', {})
        storage_config = config.get('storage', {})

        results = []
        if 'enabled' in timer_config:
            results.append(self.set_timer_enabled(timer_config['enabled']))
        if 'duration_seconds' in timer_config:
            results.append(self.set_timer_duration(timer_config['duration_seconds']))
        if 'warning_threshold_seconds' in timer_config:
            results.append(self.set_warning_threshold(timer_config['warning_threshold_seconds']))
        if quiz_config.get('question_directory'):
            results.append(self.set_question_directory(quiz_config['question_directory']))
        if storage_config.get('high_score_file'):
            results.append(self.set_high_score_file(storage_config['high_score_file']))

        for result in results:
            if not result['success']:
                errors.append(result['error'])

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected settings")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def set_timer_enabled(self, enabled: bool) -> Dict[str, any]:
        """
        Enable or disable the per-question countdown.

        Args:
            enabled: True to run a countdown for every question

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(enabled, bool):
            error_msg = f"Timer enabled must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        self._timer_settings.enabled = enabled
        state = "enabled" if enabled else "disabled"
        self.logger.info(f"Question timer {state}")
        return {
            'success': True,
            'message': f"Question timer {state}",
            'user_message': f"✅ Question timer {state}"
        }

    def set_timer_duration(self, duration: int) -> Dict[str, any]:
        """
        Set the countdown duration for each question.

        The warning threshold is clamped down to the new duration if needed.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(duration, int) or isinstance(duration, bool):
            error_msg = f"Timer duration must be an integer, got {type(duration).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            }

        if duration < self.MIN_TIMER_DURATION:
            error_msg = f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            }

        if duration > self.MAX_TIMER_DURATION:
            error_msg = f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds ({self.MAX_TIMER_DURATION // 60} minutes)"
            }

        self._timer_settings.duration_seconds = duration
        if self._timer_settings.warning_threshold_seconds > duration:
            self._timer_settings.warning_threshold_seconds = duration
        self.logger.info(f"Timer duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Timer duration set to {duration} seconds",
            'user_message': f"✅ Timer set to {duration} seconds"
        }

    def set_warning_threshold(self, seconds: int) -> Dict[str, any]:
        """
        Set how many remaining seconds count as "running out".

        Args:
            seconds: Threshold between 0 and the timer duration

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            error_msg = f"Warning threshold must be an integer, got {type(seconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            }

        duration = self._timer_settings.duration_seconds
        if seconds < 0 or seconds > duration:
            error_msg = f"Warning threshold must be between 0 and {duration} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Warning threshold must be between 0 and {duration} seconds"
            }

        self._timer_settings.warning_threshold_seconds = seconds
        self.logger.info(f"Warning threshold set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Warning threshold set to {seconds} seconds",
            'user_message': f"✅ Warning shown at {seconds} seconds remaining"
        }

    def set_question_directory(self, directory: str) -> Dict[str, any]:
        """
        Set the directory holding extra question bank files.

        Args:
            directory: Path to a directory of *.json bank files

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_path(directory, "Question directory")
        if result['success']:
            self._question_directory = result['path']
            self.logger.info(f"Question directory set to {result['path']}")
            result['message'] = f"Question directory set to {result['path']}"
            result['user_message'] = f"✅ Question directory set to {result['path']}"
        return result

    def get_question_directory(self) -> Optional[str]:
        return self._question_directory

    def set_high_score_file(self, file_path: str) -> Dict[str, any]:
        """
        Set the JSON file the best score is persisted in.

        Args:
            file_path: Path of the high score file

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_path(file_path, "High score file")
        if result['success']:
            self._high_score_file = result['path']
            self.logger.info(f"High score file set to {result['path']}")
            result['message'] = f"High score file set to {result['path']}"
            result['user_message'] = f"✅ High score file set to {result['path']}"
        return result

    def get_high_score_file(self) -> str:
        return self._high_score_file

    def _validate_path(self, value: str, label: str) -> Dict[str, any]:
        if not isinstance(value, str):
            error_msg = f"{label} must be a string, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a path string, got {type(value).__name__}"
            }

        if not value.strip():
            error_msg = f"{label} cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} cannot be empty"
            }

        try:
            normalized_path = str(Path(value).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid path format for {label.lower()}: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {value}"
            }

        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            error_msg = f"Cannot use system directory: {normalized_path}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Cannot use system directory: {value}"
            }

        return {'success': True, 'path': normalized_path}

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._timer_settings = TimerSettings(
            enabled=self.DEFAULT_TIMER_ENABLED,
            duration_seconds=self.DEFAULT_TIMER_DURATION,
            warning_threshold_seconds=self.DEFAULT_WARNING_THRESHOLD
        )
        self._question_directory = self.DEFAULT_QUESTION_DIRECTORY
        self._high_score_file = self.DEFAULT_HIGH_SCORE_FILE
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        timer = self._timer_settings

        if not isinstance(timer.enabled, bool):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid timer enabled setting: {timer.enabled}")

        if (not isinstance(timer.duration_seconds, int) or
                timer.duration_seconds < self.MIN_TIMER_DURATION or
                timer.duration_seconds > self.MAX_TIMER_DURATION):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid timer duration: {timer.duration_seconds}")

        if (not isinstance(timer.warning_threshold_seconds, int) or
                not 0 <= timer.warning_threshold_seconds <= timer.duration_seconds):
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid warning threshold: {timer.warning_threshold_seconds}"
            )

        if not isinstance(self._high_score_file, str) or not self._high_score_file.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid high score file: {self._high_score_file}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        timer = self._timer_settings
        timer_str = (
            f"{timer.duration_seconds} seconds (warning at {timer.warning_threshold_seconds}s)"
            if timer.enabled
            else "off"
        )
        return (
            f"Quiz Settings:\n"
            f"• Timer: {timer_str}\n"
            f"• Question Directory: {self._question_directory or 'bundled bank'}\n"
            f"• High Score File: {self._high_score_file}"
        )

    def get_configuration_health_check(self) -> Dict[str, any]:
        """
        Perform a health check of the configuration.

        Returns:
            Dictionary with health status and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        validation_result = self.validate_settings()
        if not validation_result['valid']:
            health_check['healthy'] = False
            health_check['errors'].extend(f"❌ {issue}" for issue in validation_result['issues'])

        if self._question_directory is not None:
            question_dir = Path(self._question_directory)
            if not question_dir.exists():
                health_check['warnings'].append(
                    f"⚠️ Question directory does not exist: {self._question_directory}"
                )
                health_check['recommendations'].append(
                    "The bundled question bank will be used instead."
                )
            elif not os.access(question_dir, os.R_OK):
                health_check['healthy'] = False
                health_check['errors'].append(
                    f"❌ Cannot read question directory: {self._question_directory}"
                )
                health_check['recommendations'].append(
                    "Check file permissions for the question directory."
                )

        if self._timer_settings.enabled and self._timer_settings.duration_seconds < 10:
            health_check['warnings'].append(
                f"⚠️ Short timer duration ({self._timer_settings.duration_seconds}s) may not give users enough time"
            )
            health_check['recommendations'].append(
                "Consider using at least 10 seconds per question."
            )

        return health_check
