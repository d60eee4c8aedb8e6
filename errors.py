"""
=============================================================================
ERRORS.PY — Errores tipados de las misiones
=============================================================================
Cada fallo de un claim tiene su propio tipo, para que la app pueda decir
al jugador el motivo exacto ("aún no completada", "bloqueada", "ya reclamada").

  MissionNotFound        → el id de misión no existe
  MissionLocked          → el prerequisito no está completado
  MissionNotActive       → ya reclamada (o todavía no activa)
  MissionIncomplete      → no se ha llegado al umbral
  ProfileNotFound        → no hay perfil al que pagar la recompensa
  TransientLookupFailure → la BD falló; se puede reintentar

En las rutas de resolución de estadísticas estos fallos NO se propagan
(se degrada a 0). En los claims SIEMPRE se propagan.
"""


class MissionError(Exception):
    """Base de todos los errores de misiones"""
    code = "mission_error"
    status_code = 400

    def __init__(self, message: str, mission_id: int = None):
        super().__init__(message)
        self.message = message
        self.mission_id = mission_id

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "mission_id": self.mission_id,
        }


class MissionNotFound(MissionError):
    code = "not_found"
    status_code = 404

    def __init__(self, mission_id: int):
        super().__init__(f"Mission {mission_id} does not exist", mission_id)


class MissionLocked(MissionError):
    code = "locked"
    status_code = 403

    def __init__(self, mission_id: int):
        super().__init__(f"Mission {mission_id} is locked - prerequisite not completed", mission_id)


class MissionNotActive(MissionError):
    code = "not_active"
    status_code = 409

    def __init__(self, mission_id: int, status: str):
        super().__init__(f"Mission {mission_id} is not active (status: {status})", mission_id)
        self.status = status


class MissionIncomplete(MissionError):
    code = "incomplete"
    status_code = 409

    def __init__(self, mission_id: int, current_value: int, required_value: int):
        super().__init__(
            f"Mission {mission_id} not completed yet ({current_value}/{required_value})",
            mission_id,
        )
        self.current_value = current_value
        self.required_value = required_value


class ProfileNotFound(MissionError):
    code = "profile_not_found"
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__(f"Profile {user_id} does not exist")
        self.user_id = user_id


class TransientLookupFailure(MissionError):
    code = "transient_failure"
    status_code = 503

    def __init__(self, message: str, mission_id: int = None):
        super().__init__(message, mission_id)
