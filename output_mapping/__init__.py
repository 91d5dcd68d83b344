"""Table output mapping for the Keboola Storage API.

Resolves result files of a job to destination tables, reconciles mapping
entries with manifest sidecar files and loads the data as queued
asynchronous storage jobs.

Usage:
    from output_mapping.lib.session import BackendSession
    from output_mapping.lib.table_writer import TableWriter

    writer = TableWriter(BackendSession.from_settings(settings))
    queue = writer.upload_tables("/data/out/tables", config, {"componentId": "my.component"}, "local")
    job_ids = queue.wait_for_all()
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
