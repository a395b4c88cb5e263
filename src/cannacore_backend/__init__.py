"""
Cannacore Backend - file intake and workflow relay for compliance checks

This package provides a FastAPI-based web service that sits between the
compliance checker's browser client and two external collaborators, S3
object storage and the compliance-analysis workflow engine. It enables:

- Chunked upload of large PDFs and images around the platform's request
  size ceiling, with out-of-order delivery and selective resend
- Reassembly, optional PDF compression and durable storage of uploads
- Submission of stored URLs to the workflow engine and status relay
- Deletion of consumed storage objects once a job finishes
- Time-based reclamation of abandoned uploads and stale job tracking

Key Components:
    - main: FastAPI application, service wiring and HTTP endpoints
    - chunk_store: Upload sessions and chunk placement
    - finalizer: Verification, reassembly and persistence of uploads
    - storage: S3 put/delete and URL ownership
    - compression: Ghostscript PDF size reduction
    - tracking: Job id to storage URL registry and cleanup
    - polling: Job status state machine and cancellable watchers
    - workflow_client: GraphQL client for the workflow engine
    - relay: Submission and poll orchestration
    - sweeper: APScheduler jobs expiring sessions and tracking entries
    - reports: Word document export of compliance reports
    - configuration: OmegaConf settings with environment overrides

Usage:
    Run the API server with:
        uvicorn cannacore_backend.main:app --reload --host 0.0.0.0 --port 8000

Architecture Principles:
    - Registries are injectable objects, never module-level state in the
      domain modules
    - Registry critical sections never await
    - Cleanup never delays or fails the response carrying a result
"""
