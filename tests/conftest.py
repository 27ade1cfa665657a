import sys
import os
from pathlib import Path
import pytest
import psycopg2
from testcontainers.postgres import PostgresContainer

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

TEST_ADMIN_USERNAME = "admin"
TEST_ADMIN_PASSWORD = "admin-password"
TEST_USER_USERNAME = "viewer"
TEST_USER_PASSWORD = "viewer-password"


@pytest.fixture(scope="session")
def postgres_container():
    postgres = PostgresContainer("postgres:16", username="test_user", password="test_pass", dbname="test_db")
    try:
        postgres.start()
    except Exception as e:
        pytest.skip(f"Container runtime unavailable: {e}")

    os.environ["TEST_DB_HOST"] = postgres.get_container_host_ip()
    os.environ["TEST_DB_PORT"] = str(postgres.get_exposed_port(5432))
    os.environ["TEST_DB_USER"] = postgres.username
    os.environ["TEST_DB_PASSWORD"] = postgres.password
    os.environ["TEST_DB_NAME"] = postgres.dbname
    try:
        yield postgres
    finally:
        postgres.stop()
        for key in ["TEST_DB_HOST", "TEST_DB_PORT", "TEST_DB_USER", "TEST_DB_PASSWORD", "TEST_DB_NAME"]:
            os.environ.pop(key, None)


@pytest.fixture(scope="session")
def migrations_dir():
    return ROOT / "migrations"


@pytest.fixture(scope="session")
def test_db(postgres_container, migrations_dir):
    conn = psycopg2.connect(
        host=os.environ["TEST_DB_HOST"],
        port=int(os.environ["TEST_DB_PORT"]),
        user=os.environ["TEST_DB_USER"],
        password=os.environ["TEST_DB_PASSWORD"],
        database=os.environ["TEST_DB_NAME"],
    )
    for migration_file in sorted(migrations_dir.glob("*.sql")):
        with migration_file.open("r") as f:
            with conn.cursor() as cur:
                cur.execute(f.read())
        conn.commit()
    conn.close()
    yield


@pytest.fixture
def test_config(tmp_path):
    """Config pointing at the test container (when up) and a temp uploads dir."""
    from src.config import Config, DatabaseConfig, UploadsConfig, BootstrapConfig

    return Config(
        database=DatabaseConfig(
            host=os.environ.get("TEST_DB_HOST", "localhost"),
            port=int(os.environ.get("TEST_DB_PORT", "5432")),
            user=os.environ.get("TEST_DB_USER", "test_user"),
            password=os.environ.get("TEST_DB_PASSWORD"),
            database=os.environ.get("TEST_DB_NAME", "test_db"),
            max_connections=10
        ),
        bootstrap=BootstrapConfig(
            admin_username=TEST_ADMIN_USERNAME,
            admin_password=TEST_ADMIN_PASSWORD,
            admin_name="Administrator",
        ),
        uploads=UploadsConfig(directory=str(tmp_path / "uploads"), max_logo_bytes=1024),
    )


@pytest.fixture
def uploads_config(test_config):
    """Install a DB-less test config for upload handling."""
    import src.config

    src.config._config = test_config
    yield test_config.uploads
    src.config._config = None


@pytest.fixture
def db_module(postgres_container, test_db, test_config):
    import db.db as db_module
    import src.config

    # Reset pool
    db_module._pool = None

    src.config._config = test_config

    yield db_module

    # Cleanup (the app lifespan may already have closed the pool)
    conn = db_module.get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute("TRUNCATE TABLE users RESTART IDENTITY CASCADE")
            cur.execute("TRUNCATE TABLE settings RESTART IDENTITY CASCADE")
        conn.commit()
    finally:
        db_module.put_conn(conn)
    db_module.close_pool()

    src.config._config = None


@pytest.fixture
def db_conn(db_module):
    conn = db_module.get_conn()
    yield conn
    db_module.put_conn(conn)


@pytest.fixture
def seeded(db_module):
    """Default admin, one regular user and baseline settings."""
    from src.main import bootstrap
    from src.users import create_user

    bootstrap()
    create_user(TEST_USER_USERNAME, TEST_USER_PASSWORD, "Viewer", "user")
    yield


def _login(client, username, password):
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return client


@pytest.fixture
def client(db_module):
    """FastAPI test client with lifespan (bootstrap seeding) run."""
    from fastapi.testclient import TestClient
    from src.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(client):
    return _login(client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD)


@pytest.fixture
def user_client(db_module):
    from fastapi.testclient import TestClient
    from src.main import app
    from src.users import create_user

    with TestClient(app) as c:
        create_user(TEST_USER_USERNAME, TEST_USER_PASSWORD, "Viewer", "user")
        yield _login(c, TEST_USER_USERNAME, TEST_USER_PASSWORD)
