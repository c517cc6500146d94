import logging
from typing import Any, Awaitable, Callable, Dict
from pydantic import ValidationError
from .engine import ProgressReconciler
from .preferences import SettingsAccessor
from .stores.base import StoreUnavailableError
from .telemetry import TelemetryLog

logger = logging.getLogger(__name__)
debug_logger = logging.getLogger("rewatch.debug")


class MessageRouter:
    """Turns ``{"action": ..., ...}`` requests into ``{"success": bool, "data"|"error": ...}`` responses."""

    def __init__(self, reconciler: ProgressReconciler, telemetry: TelemetryLog, preferences: SettingsAccessor):
        self.reconciler = reconciler
        self.telemetry = telemetry
        self.preferences = preferences
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "saveProgress": self._save_progress,
            "getProgress": self._get_progress,
            "debugLog": self._debug_log,
            "detectorStatus": self._detector_status,
            "getDetectorStatus": self._get_detector_status,
            "clearDetectorStatus": self._clear_detector_status,
            "getSettings": self._get_settings,
            "updateSettings": self._update_settings,
            "listProgress": self._list_progress,
            "deleteProgress": self._delete_progress,
            "clearCompleted": self._clear_completed,
            "exportProgress": self._export_progress,
        }

    async def handle(self, request: Any) -> Dict[str, Any]:
        action = request.get("action") if isinstance(request, dict) else None
        handler = self.handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            return {"success": False, "error": f"Unknown action: {action}"}

        logger.debug(f"Received message: {action}")
        try:
            data = await handler(request)
        except ValidationError as e:
            logger.warning(f"Rejected malformed {action} payload: {e.error_count()} errors")
            return {"success": False, "error": f"Invalid payload: {e.errors()[0]['msg']}"}
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable while handling {action}: {e}")
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(f"Error handling {action}: {e}", exc_info=True)
            return {"success": False, "error": str(e)}
        return {"success": True, "data": data}

    async def _save_progress(self, request):
        key, record = await self.reconciler.record_observation(request.get("data"))
        return {"key": key, **record.to_store()}

    async def _get_progress(self, request):
        record = await self.reconciler.lookup(request.get("url"))
        return record.to_store() if record else None

    async def _debug_log(self, request):
        debug_logger.info(f"{request.get('message')} {request.get('data') or ''}".rstrip())
        return None

    async def _detector_status(self, request):
        entry = await self.telemetry.record(request.get("entry"))
        return entry.model_dump()

    async def _get_detector_status(self, request):
        return [entry.model_dump() for entry in await self.telemetry.list()]

    async def _clear_detector_status(self, request):
        await self.telemetry.clear()
        return None

    async def _get_settings(self, request):
        return (await self.preferences.load()).to_store()

    async def _update_settings(self, request):
        return (await self.preferences.update(request.get("settings") or {})).to_store()

    async def _list_progress(self, request):
        return [{"key": key, **record.to_store()} for key, record in await self.reconciler.list_progress()]

    async def _delete_progress(self, request):
        key = request.get("key")
        if not isinstance(key, str) or not key:
            raise ValueError("deleteProgress requires a key")
        return {"deleted": await self.reconciler.delete_progress(key)}

    async def _clear_completed(self, request):
        return {"removed": await self.reconciler.clear_completed()}

    async def _export_progress(self, request):
        return await self.reconciler.export_progress()
