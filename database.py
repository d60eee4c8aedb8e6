"""
=============================================================================
DATABASE.PY — Configuración de la Base de Datos
=============================================================================
Conexión a la base de datos de UmbraDex.

En DESARROLLO (tu PC): usa SQLite (un archivo .db)
En PRODUCCIÓN: usa el PostgreSQL de la plataforma alojada

¿Cómo sabe cuál usar?
→ Si existe la variable de entorno DATABASE_URL, usa esa URL.
→ Si no existe, usa SQLite local.

Tiempos de espera:
  Todas las consultas contra PostgreSQL llevan un statement_timeout
  (STATEMENT_TIMEOUT_MS). Así ninguna operación se queda bloqueada:
  la resolución de estadísticas degrada a 0 y el claim falla cerrado.
"""

import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# CONEXIÓN
# ─────────────────────────────────────────────────────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./umbradex.db")

# La plataforma da la URL con "postgres://" pero SQLAlchemy necesita "postgresql://"
# Usamos psycopg (v3) como driver → "postgresql+psycopg://"
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

STATEMENT_TIMEOUT_MS = int(os.getenv("STATEMENT_TIMEOUT_MS", "5000"))

# ─────────────────────────────────────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────────────────────────────────────

engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # En memoria: una única conexión compartida o cada sesión vería una BD vacía
        engine_args["poolclass"] = StaticPool
else:
    engine_args["connect_args"] = {"options": f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"}
    engine_args["pool_pre_ping"] = True

engine = create_engine(DATABASE_URL, echo=False, **engine_args)


if engine.dialect.name == "sqlite":
    # pysqlite gestiona BEGIN a su manera y rompe los SAVEPOINT.
    # Desactivamos su gestión y emitimos BEGIN nosotros.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


# ─────────────────────────────────────────────────────────────────────────────
# SESSION
# ─────────────────────────────────────────────────────────────────────────────
# Cada operación pública (reconciliar, reclamar...) usa UNA sesión y
# decide ella misma cuándo hacer commit o rollback.

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ─────────────────────────────────────────────────────────────────────────────
# BASE
# ─────────────────────────────────────────────────────────────────────────────

Base = declarative_base()


def get_db():
    """
    Generador que crea una sesión de BD y la cierra al terminar.

    Se usa como "dependencia" en FastAPI:
      @app.post("/missions/sync")
      def sync(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Crea todas las tablas en la BD si no existen."""
    # Importar los modelos registra sus tablas en Base.metadata
    import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Borra todas las tablas. Solo para tests y entornos locales."""
    import models  # noqa: F401
    Base.metadata.drop_all(bind=engine)
