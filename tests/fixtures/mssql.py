import logging
import pathlib
import sys

import dbclient as db
import pytest
from testcontainers.mssql import SqlServerContainer

from libb import Setting

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
sys.path.insert(0, HERE)
sys.path.append('..')
import config
from tests.fixtures.mariadb import docker_available

logger = logging.getLogger(__name__)


@pytest.fixture(scope='session')
def mssql_docker(request):
    """Session-scoped SQL Server container using testcontainers.

    Skips the requesting tests when Docker or the pyodbc driver manager is
    not available.
    """
    pytest.importorskip('pyodbc')
    if not docker_available():
        pytest.skip('Docker is not available')

    container = SqlServerContainer(
        image='mcr.microsoft.com/mssql/server:2022-latest',
        password=config.mssql.password,
    ).with_env('MSSQL_PID', 'Developer')

    try:
        container.start()

        Setting.unlock()
        config.mssql.hostname = container.get_container_host_ip()
        config.mssql.port = int(container.get_exposed_port(1433))
        Setting.lock()

        logger.info(f'SQL Server container started at {config.mssql.hostname}:{config.mssql.port}')

        def finalizer():
            try:
                container.stop()
                logger.info('SQL Server container stopped')
            except Exception as e:
                logger.warning(f'Error stopping container: {e}')

        request.addfinalizer(finalizer)
        return container

    except Exception as e:
        logger.error(f'Error setting up SQL Server container: {e}')
        try:
            container.stop()
        except Exception:
            pass
        raise


def stage_test_data(client):
    for sql in (
        "IF OBJECT_ID('test_table', 'U') IS NOT NULL DROP TABLE test_table",
        """
CREATE TABLE test_table (
    id INT IDENTITY(1,1) NOT NULL PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    value INT NOT NULL
)
""",
    ):
        with client.query(sql) as query:
            query.execute()

    with client.query('INSERT INTO test_table (name, value) VALUES (?, ?)') as query:
        args = ['', 0]
        query.prepare('si', args)
        for name, value in (('Alice', 10), ('Bob', 20), ('Charlie', 30),
                            ('Ethan', 50), ('Fiona', 70), ('George', 80)):
            args[0], args[1] = name, value
            query.execute()


@pytest.fixture
def sconn(mssql_docker):
    """Client fixture with function scope and freshly staged test data."""
    client = db.connect('mssql', config=config)
    stage_test_data(client)
    try:
        yield client
    finally:
        try:
            client.close()
        except Exception as e:
            logger.warning(f'Error during connection cleanup: {e}')
