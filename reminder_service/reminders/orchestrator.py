from typing import Any, Dict

import requests


class OrchestratorClient:
    """HTTP client for the workflow orchestrator that runs the reminder process."""

    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _build_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def start_reminder_process(self, reminder: Dict[str, Any]) -> Dict[str, Any]:
        """POST a start request for a newly created reminder (camelCase reminder JSON)."""
        payload = {
            "reminderId": reminder["id"],
            "userId": reminder["userId"],
            "title": reminder["title"],
            "dueAt": reminder["dueAt"],
            "advanceMinutes": reminder["advanceMinutes"],
            "metadata": reminder.get("metadata") or {},
        }
        url = f"{self.base_url}/process-instances/reminder"
        r = requests.post(url, json=payload, headers=self._build_headers(), timeout=self.timeout)
        r.raise_for_status()
        try:
            return r.json()
        except ValueError:
            return {}
