"""End-to-end tests for TableWriter.upload_tables against the in-memory backend."""

import json
from unittest.mock import Mock

import pytest

from output_mapping.lib.configuration import SystemMetadata, WriterConfiguration
from output_mapping.lib.errors import InvalidOutputError, OutputOperationError
from output_mapping.lib.staging import LocalStaging
from output_mapping.lib.table_writer import TableWriter
from tests.fakes import write_csv

SYSTEM = {"componentId": "foo"}


def _manifest(directory, name, content):
    (directory / f"{name}.manifest").write_text(json.dumps(content), encoding="utf-8")


def _upload(writer, tmp_path, configuration, system=SYSTEM, staging="local", **options):
    return writer.upload_tables("out/tables", configuration, system, staging, metadata_path=str(tmp_path), **options)


@pytest.fixture
def two_tables(tables_dir):
    write_csv(tables_dir / "table1a.csv", [["Id", "Name"], ["test", "test"], ["aabb", "ccdd"]])
    write_csv(tables_dir / "table2a.csv", [["Id2", "Name2"], ["test2", "test2"], ["aabb2", "ccdd2"]])
    return tables_dir


class TestPreconditions:
    """Checks made before anything is reconciled."""

    def test_component_id_required(self, writer, tmp_path, two_tables):
        with pytest.raises(OutputOperationError, match="Component Id must be set"):
            _upload(writer, tmp_path, {"mapping": []}, system={})

    def test_invalid_configuration(self, writer, tmp_path, two_tables):
        with pytest.raises(InvalidOutputError, match="Invalid output mapping configuration"):
            _upload(writer, tmp_path, {"mapping": [{"destination": "out.c-main.a"}]})

    def test_accepts_models(self, writer, storage_client, tmp_path, two_tables):
        """Typed configuration and system metadata are accepted as is."""
        queue = writer.upload_tables(
            "out/tables",
            WriterConfiguration(bucket="out.c-main"),
            SystemMetadata("foo"),
            LocalStaging(str(tmp_path)),
        )
        assert len(queue.wait_for_all()) == 2


class TestLocalUpload:
    """Local staging: files in the output directory."""

    def test_mapped_tables(self, writer, storage_client, tmp_path, two_tables):
        """Two mapped files give two job ids and two tables."""
        queue = _upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {"source": "table1a.csv", "destination": "out.c-output-mapping-test.table1a"},
                    {"source": "table2a.csv", "destination": "out.c-output-mapping-test.table2a"},
                ]
            },
        )
        job_ids = queue.wait_for_all()

        assert len(job_ids) == 2
        assert all(job_ids)
        assert storage_client.tables["out.c-output-mapping-test.table1a"]["rows"] == [
            ["test", "test"],
            ["aabb", "ccdd"],
        ]
        assert storage_client.tables["out.c-output-mapping-test.table2a"]["columns"] == ["Id2", "Name2"]

    def test_destination_from_file_name(self, writer, storage_client, tmp_path, tables_dir):
        """Without mapping the file name is the table id."""
        write_csv(tables_dir / "out.c-main.orders.csv", [["Id"], ["1"]])
        _upload(writer, tmp_path, {}).wait_for_all()
        assert "out.c-main.orders" in storage_client.tables

    def test_hidden_files_ignored(self, writer, storage_client, tmp_path, tables_dir):
        """Dot-files in the output directory are not tables."""
        write_csv(tables_dir / "orders.csv", [["Id"], ["1"]])
        (tables_dir / ".gitkeep").write_text("")
        (tables_dir / ".gitkeep.manifest").write_text("{}")

        job_ids = _upload(
            writer, tmp_path, {"mapping": [{"source": "orders.csv", "destination": "out.c-main.orders"}]}
        ).wait_for_all()

        assert len(job_ids) == 1
        assert set(storage_client.tables) == {"out.c-main.orders"}

    def test_bucket_prefix_for_mapping(self, writer, storage_client, tmp_path, two_tables):
        """Mappings without destination use bucket + file name."""
        _upload(
            writer,
            tmp_path,
            {"mapping": [{"source": "table1a.csv"}], "bucket": "out.c-main"},
        ).wait_for_all()
        assert set(storage_client.tables) == {"out.c-main.table1a", "out.c-main.table2a"}

    def test_bucket_prefix_ignores_manifest_destination(self, writer, storage_client, tmp_path, two_tables):
        """With a bucket declared the manifest destination is replaced."""
        _manifest(two_tables, "table1a.csv", {"destination": "out.c-other.somewhere"})
        _upload(writer, tmp_path, {"mapping": [{"source": "table1a.csv"}], "bucket": "out.c-main"}).wait_for_all()
        assert "out.c-main.table1a" in storage_client.tables
        assert "out.c-other.somewhere" not in storage_client.tables

    def test_manifest_only(self, writer, storage_client, tmp_path, two_tables):
        """A manifest without mapping configures the table."""
        _manifest(two_tables, "table1a.csv", {"destination": "out.c-main.first", "primary_key": ["Id"]})
        _manifest(two_tables, "table2a.csv", {"destination": "out.c-main.second", "incremental": True})
        _upload(writer, tmp_path, {}).wait_for_all()

        assert storage_client.tables["out.c-main.first"]["primaryKey"] == ["Id"]
        second_load = [c for c in storage_client.calls if c[0] == "load_table_async" and c[1] == "out.c-main.second"]
        assert second_load[0][2]["incremental"] is True

    def test_manifest_and_mapping_merged(self, writer, storage_client, tmp_path, tables_dir):
        """Mapping wins; manifest fills in columns."""
        write_csv(tables_dir / "table.csv", [["1", "a"]])
        _manifest(tables_dir, "table.csv", {"destination": "out.c-main.manifest", "columns": ["Id", "Name"]})
        _upload(
            writer,
            tmp_path,
            {"mapping": [{"source": "table.csv", "destination": "out.c-main.mapped"}]},
        ).wait_for_all()

        assert storage_client.tables["out.c-main.mapped"]["columns"] == ["Id", "Name"]
        assert storage_client.tables["out.c-main.mapped"]["rows"] == [["1", "a"]]
        assert "out.c-main.manifest" not in storage_client.tables

    def test_one_source_many_destinations(self, writer, storage_client, tmp_path, tables_dir):
        """Several mappings of one source fan out into several loads."""
        write_csv(tables_dir / "table1a.csv", [["Id"], ["1"]])
        queue = _upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {"source": "table1a.csv", "destination": "out.c-main.copy1"},
                    {"source": "table1a.csv", "destination": "out.c-main.copy2"},
                ]
            },
        )
        assert len(queue.wait_for_all()) == 2
        assert set(storage_client.tables) == {"out.c-main.copy1", "out.c-main.copy2"}
        assert storage_client.tables["out.c-main.copy2"]["rows"] == [["1"]]

    def test_sliced_table(self, writer, storage_client, tmp_path, tables_dir):
        """A directory is uploaded as a sliced file."""
        sliced = tables_dir / "sliced.csv"
        sliced.mkdir()
        write_csv(sliced / "part1", [["1", "a"]])
        write_csv(sliced / "part2", [["2", "b"]])
        _upload(
            writer,
            tmp_path,
            {"mapping": [{"source": "sliced.csv", "destination": "out.c-main.sliced", "columns": ["Id", "Name"]}]},
        ).wait_for_all()

        assert storage_client.tables["out.c-main.sliced"]["rows"] == [["1", "a"], ["2", "b"]]
        assert "upload_sliced_file" in storage_client.call_names()

    def test_metadata_round_trip(self, writer, metadata_client, tmp_path, tables_dir):
        """Mapping metadata wins per key and provenance is stamped once each."""
        write_csv(tables_dir / "table.csv", [["Id", "Name"], ["1", "a"]])
        _manifest(
            tables_dir,
            "table.csv",
            {
                "destination": "out.c-main.table",
                "metadata": [{"key": "foo", "value": "baz"}, {"key": "bar", "value": "baz"}],
            },
        )
        _upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {
                        "source": "table.csv",
                        "destination": "out.c-main.table",
                        "metadata": [{"key": "foo", "value": "bar"}],
                        "column_metadata": {"Id": [{"key": "type", "value": "INT"}]},
                    }
                ]
            },
        ).wait_for_all()

        items = metadata_client.table_metadata["out.c-main.table"]
        assert len(items) == 4
        assert metadata_client.table_values("out.c-main.table") == {
            "foo": "bar",
            "bar": "baz",
            "KBC.createdBy.component.id": "foo",
            "KBC.lastUpdatedBy.component.id": "foo",
        }
        assert {item["provider"] for item in items if item["key"] in ("foo", "bar")} == {"foo"}
        assert metadata_client.column_metadata["out.c-main.table.Id"] == [
            {"provider": "foo", "key": "type", "value": "INT"}
        ]

    def test_second_load_reuses_table(self, writer, storage_client, tmp_path, tables_dir):
        """Reloading does not recreate the destination and replaces the rows."""
        config = {"mapping": [{"source": "table.csv", "destination": "out.c-main.table"}]}
        write_csv(tables_dir / "table.csv", [["Id"], ["1"], ["2"]])
        _upload(writer, tmp_path, config).wait_for_all()

        write_csv(tables_dir / "table.csv", [["Id"], ["3"]])
        storage_client.calls.clear()
        _upload(writer, tmp_path, config).wait_for_all()

        assert "create_bucket" not in storage_client.call_names()
        assert "create_table_async" not in storage_client.call_names()
        assert storage_client.tables["out.c-main.table"]["rows"] == [["3"]]

    def test_incremental_delete_where(self, writer, storage_client, tmp_path, tables_dir):
        """Rows matching the predicate are replaced by the incremental load."""
        storage_client.buckets["out.c-main"] = {"id": "out.c-main"}
        storage_client.create_table_async("out.c-main", "table", ["Id", "Day"])
        storage_client.tables["out.c-main.table"]["rows"] = [["1", "mon"], ["2", "tue"]]
        write_csv(tables_dir / "table.csv", [["Id", "Day"], ["3", "tue"]])

        _upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {
                        "source": "table.csv",
                        "destination": "out.c-main.table",
                        "incremental": True,
                        "delete_where_column": "Day",
                        "delete_where_values": ["tue"],
                    }
                ]
            },
        ).wait_for_all()

        assert storage_client.tables["out.c-main.table"]["rows"] == [["1", "mon"], ["3", "tue"]]

    def test_yaml_manifests(self, session, storage_client, tmp_path, tables_dir):
        """Manifests are read in the configured format."""
        write_csv(tables_dir / "table.csv", [["Id"], ["1"]])
        (tables_dir / "table.csv.manifest").write_text("destination: out.c-main.yaml\n", encoding="utf-8")
        TableWriter(session, manifest_format="yaml").upload_tables(
            "out/tables", {}, SYSTEM, "local", metadata_path=str(tmp_path)
        ).wait_for_all()
        assert "out.c-main.yaml" in storage_client.tables


class TestLocalReconciliationErrors:
    """Reconciliation failures happen before any backend call."""

    def test_missing_source(self, writer, storage_client, tmp_path, two_tables):
        with pytest.raises(InvalidOutputError, match="Table source 'missing.csv' not found.") as exc_info:
            _upload(writer, tmp_path, {"mapping": [{"source": "missing.csv", "destination": "out.c-main.x"}]})
        assert exc_info.value.code == 404
        assert storage_client.calls == []

    def test_orphaned_manifest(self, writer, storage_client, tmp_path, two_tables):
        _manifest(two_tables, "orphan.csv", {"destination": "out.c-main.orphan"})
        with pytest.raises(InvalidOutputError, match="Found orphaned table manifest: 'orphan.csv.manifest'"):
            _upload(writer, tmp_path, {})
        assert storage_client.calls == []

    def test_invalid_destination(self, writer, storage_client, tmp_path, tables_dir):
        write_csv(tables_dir / "orders.csv", [["Id"], ["1"]])
        with pytest.raises(InvalidOutputError) as exc_info:
            _upload(writer, tmp_path, {})
        assert str(exc_info.value) == (
            'CSV file "orders" file name is not a valid table identifier, either set output mapping '
            'for "orders.csv" or make sure that the file name is a valid Storage table identifier.'
        )
        assert storage_client.calls == []

    def test_sliced_without_columns(self, writer, storage_client, tmp_path, tables_dir):
        sliced = tables_dir / "sliced.csv"
        sliced.mkdir()
        write_csv(sliced / "part1", [["1"]])
        write_csv(tables_dir / "first.csv", [["Id"], ["1"]])
        with pytest.raises(InvalidOutputError, match='Sliced file "sliced.csv" columns specification missing.'):
            _upload(
                writer,
                tmp_path,
                {
                    "mapping": [
                        {"source": "first.csv", "destination": "out.c-main.first"},
                        {"source": "sliced.csv", "destination": "out.c-main.sliced"},
                    ]
                },
            )
        assert storage_client.calls == []

    def test_schema_violation(self, writer, storage_client, tmp_path, two_tables):
        with pytest.raises(InvalidOutputError, match="Failed to write manifest for table table1a.csv"):
            _upload(
                writer,
                tmp_path,
                {
                    "mapping": [
                        {"source": "table1a.csv", "destination": "out.c-main.a", "delimiter": ";;"},
                        {"source": "table2a.csv", "destination": "out.c-main.b"},
                    ]
                },
            )
        assert storage_client.calls == []

    def test_backend_error_wrapped(self, writer, storage_client, tmp_path, two_tables, monkeypatch):
        """Backend errors keep their status code."""
        from output_mapping.lib.errors import StorageApiError

        def forbidden(name, stage):
            raise StorageApiError("You don't have access to the bucket", 403)

        monkeypatch.setattr(storage_client, "create_bucket", forbidden)
        with pytest.raises(InvalidOutputError) as exc_info:
            _upload(
                writer,
                tmp_path,
                {
                    "mapping": [
                        {"source": "table1a.csv", "destination": "out.c-main.a"},
                        {"source": "table2a.csv", "destination": "out.c-main.b"},
                    ]
                },
            )
        assert str(exc_info.value) == (
            "Cannot upload file 'table1a.csv' to table 'out.c-main.a' in Storage API: "
            "You don't have access to the bucket"
        )
        assert exc_info.value.code == 403
        assert isinstance(exc_info.value.__cause__, StorageApiError)

    def test_failed_job(self, writer, storage_client, tmp_path, two_tables):
        storage_client.failing_tables["out.c-main.table1a"] = "Some columns are missing in the csv file."
        queue = _upload(writer, tmp_path, {"bucket": "out.c-main"})
        with pytest.raises(InvalidOutputError, match='Failed to load table "out.c-main.table1a"'):
            queue.wait_for_all()
        assert storage_client.tables["out.c-main.table2a"]["rows"]


class TestBranchUpload:
    """Loading from a development branch."""

    def test_destination_rewritten(self, branch_session, storage_client, metadata_client, tmp_path, two_tables):
        queue = _upload(TableWriter(branch_session), tmp_path, {"bucket": "out.c-main"})
        queue.wait_for_all()

        assert set(storage_client.tables) == {"out.c-123-main.table1a", "out.c-123-main.table2a"}
        assert storage_client.call_names().count("create_bucket") == 1
        assert {"key": "KBC.createdBy.branch.id", "value": "123", "provider": "system"} in (
            metadata_client.bucket_metadata["out.c-123-main"]
        )

    def test_branch_from_configuration(self, session, storage_client, metadata_client, tmp_path, two_tables):
        """branchId in the configuration scopes the run to that branch."""
        _upload(TableWriter(session), tmp_path, {"bucket": "out.c-main", "branchId": 456}).wait_for_all()

        assert set(storage_client.tables) == {"out.c-456-main.table1a", "out.c-456-main.table2a"}
        assert metadata_client.table_values("out.c-456-main.table1a")["KBC.lastUpdatedBy.branch.id"] == "456"

    def test_foreign_branch_bucket(self, branch_session, storage_client, metadata_client, tmp_path, two_tables):
        storage_client.buckets["out.c-123-main"] = {"id": "out.c-123-main"}
        metadata_client.post_bucket_metadata(
            "out.c-123-main", "system", [{"key": "KBC.lastUpdatedBy.branch.id", "value": "999"}]
        )
        with pytest.raises(InvalidOutputError, match='assigned to branch with ID "999"'):
            _upload(TableWriter(branch_session), tmp_path, {"bucket": "out.c-main"})
        assert "load_table_async" not in storage_client.call_names()


class TestWorkspaceUpload:
    """Workspace staging: sources are objects in a remote workspace."""

    @pytest.fixture(autouse=True)
    def workspace(self, storage_client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        storage_client.workspace_objects["table1a"] = [["test", "test"]]
        storage_client.workspace_objects["table2a"] = [["test2", "test2"]]

    def _upload(self, writer, tmp_path, configuration, **options):
        return _upload(writer, tmp_path, configuration, staging="workspace-snowflake", workspace_id="1", **options)

    def test_mapping_sources(self, writer, storage_client, tmp_path, tables_dir):
        """Mapped objects are loaded without a local file check."""
        queue = self._upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {"source": "table1a", "destination": "out.c-main.table1a", "columns": ["Id", "Name"]},
                    {"source": "table2a", "destination": "out.c-main.table2a", "columns": ["Id2", "Name2"]},
                ]
            },
        )
        assert len(queue.wait_for_all()) == 2
        load = [c for c in storage_client.calls if c[0] == "load_table_async"][0]
        assert load[2] == {
            "dataWorkspaceId": "1",
            "dataObject": "table1a",
            "incremental": False,
            "columns": ["Id", "Name"],
        }
        assert storage_client.tables["out.c-main.table2a"]["rows"] == [["test2", "test2"]]

    def test_manifest_sources(self, writer, storage_client, tmp_path, tables_dir):
        """Manifests add sources; bucket fills missing destinations."""
        _manifest(tables_dir, "table2a", {"columns": ["Id2", "Name2"]})
        queue = self._upload(
            writer,
            tmp_path,
            {
                "mapping": [{"source": "table1a", "destination": "out.c-main.table1a", "columns": ["Id"]}],
                "bucket": "out.c-ws",
            },
        )
        queue.wait_for_all()
        assert set(storage_client.tables) == {"out.c-main.table1a", "out.c-ws.table2a"}

    def test_duplicate_sources_fan_out(self, writer, storage_client, tmp_path, tables_dir):
        queue = self._upload(
            writer,
            tmp_path,
            {
                "mapping": [
                    {"source": "table1a", "destination": "out.c-main.first", "columns": ["Id", "Name"]},
                    {"source": "table1a", "destination": "out.c-main.second", "columns": ["Id", "Name"]},
                ]
            },
        )
        assert len(queue.wait_for_all()) == 2
        assert storage_client.tables["out.c-main.second"]["rows"] == [["test", "test"]]

    def test_unresolved_destination(self, writer, storage_client, tmp_path, tables_dir):
        _manifest(tables_dir, "table1a", {"columns": ["Id"]})
        with pytest.raises(InvalidOutputError, match='Failed to resolve destination for output table "table1a".'):
            self._upload(writer, tmp_path, {})
        assert storage_client.calls == []

    def test_missing_columns(self, writer, tmp_path, tables_dir):
        """Without columns the header cannot be read from the workspace."""
        with pytest.raises(InvalidOutputError, match="Failed to read file table1a Cannot open file table1a"):
            self._upload(writer, tmp_path, {"mapping": [{"source": "table1a", "destination": "out.c-main.table1a"}]})

    def test_abs_sliced_object(self, writer, storage_client, tmp_path, tables_dir):
        """ABS workspaces detect sliced objects by blob prefix."""
        container = Mock()
        blob = Mock()
        blob.name = "out/tables/table1a/part1"
        container.list_blobs.return_value = [blob]
        storage_client.workspace_objects["out/tables/table1a/"] = [["1", "a"]]

        _upload(
            writer,
            tmp_path,
            {"mapping": [{"source": "table1a", "destination": "out.c-main.table1a", "columns": ["Id", "Name"]}]},
            staging="workspace-abs",
            workspace_id="1",
            container_client=container,
        ).wait_for_all()

        assert storage_client.tables["out.c-main.table1a"]["rows"] == [["1", "a"]]
