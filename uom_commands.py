"""
Command surface for the desktop shell.

Every command returns {'ok': True, 'data': ...} or {'ok': False, 'error': '...'}
so the shell never has to know about the exception types underneath.

Usage:
    from uom_commands import PortalCommands

    commands = PortalCommands()
    result = commands.invoke('try_restore_session')
    if not result['ok']:
        result = commands.invoke('login', username='...', password='...')
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

from app_settings import AppSettingsStore
from uom_api import PortalClient
from uom_auth import AuthSessionManager, PortalError


class PortalCommands:
    """One instance per process: one session manager, one settings store."""

    COMMANDS = (
        'try_restore_session',
        'login',
        'get_student_info',
        'get_grades',
        'get_grade_stats',
        'logout',
        'get_keep_in_tray',
        'set_keep_in_tray',
    )

    def __init__(
        self,
        manager: AuthSessionManager | None = None,
        settings: AppSettingsStore | None = None,
    ) -> None:
        self.manager = manager if manager is not None else AuthSessionManager(verbose=False)
        self.client = PortalClient(self.manager)
        if settings is None:
            settings = AppSettingsStore()
            settings.load()
        self.settings = settings

    @staticmethod
    def _call(func: Callable[..., Any], *args: Any) -> dict[str, Any]:
        try:
            return {'ok': True, 'data': func(*args)}
        except (PortalError, ValueError, OSError) as e:
            return {'ok': False, 'error': str(e)}

    def invoke(self, command: str, **kwargs: Any) -> dict[str, Any]:
        """Dispatch a command by name, as the shell does."""
        if command not in self.COMMANDS:
            return {'ok': False, 'error': f'Unknown command: {command}'}
        method = getattr(self, command)
        try:
            inspect.signature(method).bind(**kwargs)
        except TypeError as e:
            return {'ok': False, 'error': f'Bad arguments for {command}: {e}'}
        return method(**kwargs)

    def try_restore_session(self) -> dict[str, Any]:
        return self._call(self.manager.restore)

    def login(self, username: str, password: str) -> dict[str, Any]:
        return self._call(self.manager.login, username, password)

    def get_student_info(self) -> dict[str, Any]:
        return self._call(self.client.student_info)

    def get_grades(self) -> dict[str, Any]:
        return self._call(self.client.grades)

    def get_grade_stats(self, course_syllabus_id: str, exam_period_id: str) -> dict[str, Any]:
        return self._call(self.client.grade_stats, course_syllabus_id, exam_period_id)

    def logout(self) -> dict[str, Any]:
        return self._call(self.manager.logout)

    def get_keep_in_tray(self) -> dict[str, Any]:
        return {'ok': True, 'data': self.settings.keep_in_tray}

    def set_keep_in_tray(self, value: bool) -> dict[str, Any]:
        return self._call(self.settings.set_keep_in_tray, value)
