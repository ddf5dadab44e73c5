"""KFP v2 pipeline: scheduled incremental tracker sync.

A single-step pipeline wrapping ``run_tracker_sync``.  It is meant to be
attached to a recurring run with ``max_concurrency=1``; overlapping runs
would be two writers on the same collections.  The sync step reads its
credentials from the ``tracker-credentials`` secret (keys ``user_email``
and ``api_token``), which must exist in the run namespace.

Compile
-------
    python -m pipelines.sync_pipeline --compile

Schedule (requires a reachable KFP endpoint)
---------------------------------------------
    python -m pipelines.sync_pipeline --compile --host http://kfp.example \\
        --cron "0 */15 * * * *"
"""

from kfp import compiler, dsl, kubernetes

from pipelines.components.sync import run_tracker_sync

# Kubernetes secret holding the tracker credentials, key → env var.
TRACKER_SECRET_NAME = "tracker-credentials"
TRACKER_SECRET_KEYS = {
    "user_email": "TRACKER_USER_EMAIL",
    "api_token": "TRACKER_API_TOKEN",
}


# ──────────────────────────────────────────────────────────────────────
# Pipeline definition
# ──────────────────────────────────────────────────────────────────────


@dsl.pipeline(
    name="tracker-sync-pipeline",
    description=(
        "Incremental issue-tracker sync: fetch → normalise → diff → "
        "chunk + embed → upsert vectors → persist canonical documents."
    ),
)
def sync_pipeline(
    # ── Source ──────────────────────────────────────────────────────
    tracker_base_url: str = "https://tracker.example.com/api",
    project_key: str = "PROJ",
    max_records: int = 0,
    page_size: int = 100,
    # ── Chunking / embedding ───────────────────────────────────────
    chunk_size: int = 1800,
    chunk_overlap: int = 200,
    embedding_model: str = "sentence-transformers/paraphrase-multilingual-mpnet-base-v2",
    # ── Vector DB ──────────────────────────────────────────────────
    chroma_host: str = "chroma.kubeflow.svc.cluster.local",
    chroma_port: int = 8000,
    vector_collection: str = "tracker_records",
    document_collection: str = "tracker_documents",
    job_collection: str = "tracker_sync_jobs",
) -> None:
    """One sync pass.

    Parameters
    ----------
    tracker_base_url / project_key:
        Source API and the project whose records are synced.
    max_records:
        Record cap for trial runs (``0`` = unlimited).
    page_size:
        Records per search page.
    chunk_size / chunk_overlap:
        Chunking parameters.
    embedding_model:
        HuggingFace model identifier for embedding.
    chroma_host / chroma_port:
        Chroma connection details.
    vector_collection / document_collection / job_collection:
        Target Chroma collections.
    """
    task = run_tracker_sync(
        tracker_base_url=tracker_base_url,
        project_key=project_key,
        chroma_host=chroma_host,
        chroma_port=chroma_port,
        max_records=max_records,
        page_size=page_size,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        embedding_model=embedding_model,
        vector_collection=vector_collection,
        document_collection=document_collection,
        job_collection=job_collection,
    )
    kubernetes.use_secret_as_env(
        task,
        secret_name=TRACKER_SECRET_NAME,
        secret_key_to_env=TRACKER_SECRET_KEYS,
    )


# ──────────────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────────────


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Tracker sync pipeline")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Compile pipeline to YAML",
    )
    parser.add_argument(
        "--output",
        default="pipelines/compiled/sync_pipeline.yaml",
        help="Output path for compiled YAML",
    )
    parser.add_argument("--host", help="KFP endpoint; when set, a recurring run is created")
    parser.add_argument("--cron", default="0 */15 * * * *", help="KFP cron expression (with seconds)")
    parser.add_argument("--experiment", default="tracker-sync", help="KFP experiment name")
    args = parser.parse_args()

    if args.compile:
        compiler.Compiler().compile(sync_pipeline, args.output)
        print(f"Pipeline compiled → {args.output}")

    if args.host:
        from kfp import Client

        client = Client(host=args.host)
        experiment = client.create_experiment(args.experiment)
        run = client.create_recurring_run(
            experiment_id=experiment.experiment_id,
            job_name="tracker-sync",
            cron_expression=args.cron,
            max_concurrency=1,
            no_catchup=True,
            pipeline_package_path=args.output,
        )
        print(f"Recurring run created → {run.recurring_run_id}")
