"""
casegen

FastAPI backend that turns a Jira issue (plus optional screenshots) into a
markdown test case document using the OpenAI chat completions API.

Architecture Overview:
- Repository pattern for data access (generations, projects, issue source)
- Dependency Injection through a small container and FastAPI Depends
- Pure services for request building, result parsing and version history
- Structured logging with structlog

Key Features:
- Manual or automation-oriented test case generation
- Screenshot uploads grouped into short-lived image sessions
- Retries with exponential backoff and per-call cost accounting
- Content editing with a version history
- Markdown and Excel downloads

Usage:
1. Copy .env.example to .env and configure your API keys
2. Install: pip install -e ".[test]"
3. Run the application: python main.py
4. Access API docs at: http://localhost:8000/api/v1/docs

Every endpoint except health expects an X-User-Email header naming the caller.

API Endpoints:
- POST /api/v1/images/sessions - Upload screenshots into an image session
- GET /api/v1/images/sessions - List the caller's live image sessions
- GET /api/v1/images/sessions/{id} - Get an image session
- POST /api/v1/images/sessions/{id}/extend - Push a session's expiry back
- DELETE /api/v1/images/sessions/{id} - Delete a session and its files
- POST /api/v1/generations/preflight - Estimate tokens and cost for an issue
- POST /api/v1/generations/testcases - Generate test cases for an issue
- GET /api/v1/generations/ - List the caller's generations
- GET /api/v1/generations/{id} - Get a generation
- PUT /api/v1/generations/{id}/content - Edit content, keeping the old version
- GET /api/v1/generations/{id}/versions - Version history
- GET /api/v1/generations/{id}/testcases - Parsed test case rows
- GET /api/v1/generations/{id}/download/markdown - Download as .md
- GET /api/v1/generations/{id}/download/xlsx - Download as .xlsx
- GET /api/v1/projects/ - Projects seen so far
- GET /api/v1/health - Health check

Maintenance:
- python scripts/cleanup_images.py [max_age_hours] removes stale uploads
"""
