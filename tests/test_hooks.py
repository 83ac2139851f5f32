"""Tests for seeding and post-start SQL."""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dqliteinit.config import NodeConfig, SeedDatabase
from dqliteinit.exceptions import ConnectionError, OperationalError
from dqliteinit.hooks import DatabaseSeeder, SqlFileRunner


@pytest.fixture(autouse=True)
def leader() -> Iterator[AsyncMock]:
    with patch(
        "dqliteinit.hooks.find_leader", AsyncMock(return_value="127.0.0.1:9001")
    ) as find_leader:
        yield find_leader


@pytest.fixture
def conn() -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock(return_value=(0, 0))
    conn.__aenter__ = AsyncMock(return_value=conn)
    conn.__aexit__ = AsyncMock(return_value=None)
    return conn


class TestDatabaseSeeder:
    async def test_nothing_to_seed(self) -> None:
        seeder = DatabaseSeeder(NodeConfig(), [])
        assert not await seeder.needs_seed()

    async def test_seed_opens_each_database(self, conn: MagicMock) -> None:
        databases = [
            SeedDatabase("app", ("CREATE TABLE IF NOT EXISTS users (id INTEGER PRIMARY KEY)",)),
            SeedDatabase("audit"),
        ]
        seeder = DatabaseSeeder(NodeConfig(address="127.0.0.1:9001"), databases)

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory:
            assert await seeder.needs_seed()
            await seeder.seed()

        opened = [call.kwargs["database"] for call in factory.call_args_list]
        assert opened == ["app", "audit"]
        conn.execute.assert_awaited_once_with(
            "CREATE TABLE IF NOT EXISTS users (id INTEGER PRIMARY KEY)"
        )

    async def test_seed_failure_propagates(self, conn: MagicMock) -> None:
        conn.execute.side_effect = OperationalError(1, "syntax error")
        seeder = DatabaseSeeder(NodeConfig(), [SeedDatabase("app", ("CREATE TABL",))])

        with (
            patch("dqliteinit.hooks.NodeConnection", return_value=conn),
            pytest.raises(OperationalError, match="syntax error"),
        ):
            await seeder.seed()


    async def test_seed_goes_to_leader_from_follower(
        self, leader: AsyncMock, conn: MagicMock
    ) -> None:
        leader.return_value = "10.0.0.2:9001"
        seeder = DatabaseSeeder(
            NodeConfig(address="10.0.0.1:9001"), [SeedDatabase("app", ("CREATE TABLE t (x)",))]
        )

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory:
            await seeder.seed()

        leader.assert_awaited_once_with("10.0.0.1:9001", timeout=10.0)
        assert factory.call_args.args[0] == "10.0.0.2:9001"
        conn.execute.assert_awaited_once_with("CREATE TABLE t (x)")

    async def test_no_leader(self, leader: AsyncMock, conn: MagicMock) -> None:
        leader.side_effect = ConnectionError("127.0.0.1:9001 knows no leader")
        seeder = DatabaseSeeder(NodeConfig(), [SeedDatabase("app")])

        with (
            patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory,
            pytest.raises(ConnectionError, match="knows no leader"),
        ):
            await seeder.seed()

        factory.assert_not_called()


class TestSqlFileRunner:
    async def test_no_files(self, conn: MagicMock) -> None:
        runner = SqlFileRunner(NodeConfig(), [])

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory:
            await runner.run_post_start_sql()

        factory.assert_not_called()

    async def test_runs_files_in_order(self, tmp_path: Path, conn: MagicMock) -> None:
        first = tmp_path / "01.sql"
        first.write_text("CREATE TABLE IF NOT EXISTS a (x)")
        second = tmp_path / "02.sql"
        second.write_text("CREATE TABLE IF NOT EXISTS b (x)")
        runner = SqlFileRunner(NodeConfig(database="app"), [str(first), str(second)])

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory:
            await runner.run_post_start_sql()

        assert factory.call_args.kwargs["database"] == "app"
        assert [call.args[0] for call in conn.execute.await_args_list] == [
            "CREATE TABLE IF NOT EXISTS a (x)",
            "CREATE TABLE IF NOT EXISTS b (x)",
        ]

    async def test_files_run_on_leader_from_follower(
        self, tmp_path: Path, leader: AsyncMock, conn: MagicMock
    ) -> None:
        leader.return_value = "10.0.0.3:9001"
        sql = tmp_path / "01.sql"
        sql.write_text("CREATE TABLE IF NOT EXISTS a (x)")
        runner = SqlFileRunner(NodeConfig(address="10.0.0.1:9001", database="app"), [str(sql)])

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn) as factory:
            await runner.run_post_start_sql()

        factory.assert_called_once_with("10.0.0.3:9001", database="app", timeout=10.0)

    async def test_unreadable_file_is_skipped(self, tmp_path: Path, conn: MagicMock) -> None:
        present = tmp_path / "present.sql"
        present.write_text("CREATE TABLE IF NOT EXISTS a (x)")
        runner = SqlFileRunner(NodeConfig(), [str(tmp_path / "missing.sql"), str(present)])

        with patch("dqliteinit.hooks.NodeConnection", return_value=conn):
            await runner.run_post_start_sql()

        conn.execute.assert_awaited_once_with("CREATE TABLE IF NOT EXISTS a (x)")

    async def test_execution_failure_propagates(self, tmp_path: Path, conn: MagicMock) -> None:
        bad = tmp_path / "bad.sql"
        bad.write_text("NOT SQL")
        conn.execute.side_effect = OperationalError(1, "near NOT: syntax error")
        runner = SqlFileRunner(NodeConfig(), [str(bad)])

        with (
            patch("dqliteinit.hooks.NodeConnection", return_value=conn),
            pytest.raises(OperationalError),
        ):
            await runner.run_post_start_sql()
