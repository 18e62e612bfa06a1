import time
from collections import deque
from typing import Deque, Dict


class RateLimiter:
    """Ventana deslizante por IP, en memoria (cada proceso lleva su cuenta).

    Las IPs cuya ventana se queda vacía se borran, como mucho una pasada
    completa por ventana.
    """

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clients: Dict[str, Deque[float]] = {}
        self._ultima_limpieza = time.monotonic()

    def _recortar(self, client_id: str, now: float) -> Deque[float]:
        peticiones = self.clients.get(client_id, deque())
        while peticiones and now - peticiones[0] >= self.window_seconds:
            peticiones.popleft()
        if not peticiones:
            self.clients.pop(client_id, None)
        return peticiones

    def _limpiar(self, now: float):
        if now - self._ultima_limpieza < self.window_seconds:
            return
        for client_id in list(self.clients):
            self._recortar(client_id, now)
        self._ultima_limpieza = now

    def allow_request(self, client_id: str) -> bool:
        now = time.monotonic()
        self._limpiar(now)

        peticiones = self._recortar(client_id, now)
        if len(peticiones) >= self.max_requests:
            return False
        peticiones.append(now)
        self.clients[client_id] = peticiones
        return True
