"""
Server startup script.
Checks configuration and starts the FastAPI application; tables are
created and the expiry sweeper started in the app lifespan.
"""
import sys
import uvicorn

print("=" * 60)
print("TRADE ENGINE - SERVER STARTUP")
print("=" * 60)

print("\n[1/2] Loading configuration...")
try:
    from src.config import get_settings
    settings = get_settings()
    print("[OK] Configuration loaded")
except Exception as e:
    print(f"[ERROR] Configuration failed: {e}")
    sys.exit(1)

print("\n[2/2] Starting FastAPI server...")
try:
    print(f"[OK] Server starting on http://{settings.host}:{settings.port}")
    print(f"     Expiry sweeper: {'enabled' if settings.sweeper_enabled else 'disabled'} "
          f"(every {settings.sweeper_interval_seconds}s)")
    print("\nEndpoints:")
    print("  - Health: GET /health")
    print("  - Propose: POST /api/v1/trades")
    print("  - My trades: GET /api/v1/trades")
    print("  - Actions: POST /api/v1/trades/{id}/accept|reject|counter|ship|confirm-delivery|cancel")
    print("  - API Docs: GET /docs")
    print("\nPress CTRL+C to stop")
    print("=" * 60 + "\n")

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info"
    )
except KeyboardInterrupt:
    print("\n\n[OK] Server shutdown requested")
    sys.exit(0)
except Exception as e:
    print(f"\n[ERROR] Server startup failed: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
