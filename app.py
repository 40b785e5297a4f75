import asyncio
from datetime import datetime
from typing import Optional
from fastapi import FastAPI
from contextlib import asynccontextmanager

from teamshares.config import MarketConfig
from teamshares.market_ux import router as market_router
from teamshares.services import MarketServices, build_services

# ==========================
# GLOBAL TICK STATE
# ==========================

TICK_INTERVAL = 5.0  # seconds
current_tick = 0
tick_start_time = None

# ==========================
# TICK LOOP
# ==========================

async def run_settlement(services: MarketServices):
    """Run one settlement sync per configured league, off the event loop."""
    for league in services.config.leagues:
        try:
            await asyncio.to_thread(services.sync.run, league)
        except Exception as e:
            print(f"[Tick {current_tick}] ERROR in settlement for {league}: {e}")


async def tick_loop(services: MarketServices):
    """Global tick loop. Settlement runs every `sync_interval_ticks` ticks."""
    global current_tick
    while True:
        current_tick += 1
        now = datetime.utcnow()
        if current_tick == 1 or current_tick % services.config.sync_interval_ticks == 0:
            await run_settlement(services)

        if current_tick % 60 == 0:
            print(f"[Tick {current_tick}] {now.isoformat()}")
        await asyncio.sleep(TICK_INTERVAL)

# ==========================
# APP FACTORY
# ==========================

def create_app(config: Optional[MarketConfig] = None, feed=None, run_sync_loop: bool = True) -> FastAPI:
    """Build the market app. Tests pass their own config and feed."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        global tick_start_time
        print("=" * 50)
        print("Starting Team Shares Market")
        print("=" * 50)
        tick_start_time = datetime.utcnow()
        services = build_services(config or MarketConfig.from_env(), feed=feed)
        app.state.market = services
        tick_task = None
        if run_sync_loop:
            tick_task = asyncio.create_task(tick_loop(services))
            print(f"Tick loop started (interval: {TICK_INTERVAL}s, "
                  f"settlement every {services.config.sync_interval_ticks} ticks)")
        print("=" * 50)
        yield
        print("\nShutting down...")
        if tick_task:
            tick_task.cancel()
            try:
                await tick_task
            except asyncio.CancelledError:
                pass
        services.close()
        print("Shutdown complete.")

    app = FastAPI(
        title="Team Shares Market",
        description="Trade shares in sports teams, paid out on wins",
        version="0.1.0",
        lifespan=lifespan
    )

    # ==========================
    # SYSTEM ENDPOINTS
    # ==========================

    @app.get("/api/status")
    async def get_status():
        services = app.state.market
        return {
            "status": "running",
            "current_tick": current_tick,
            "started_at": tick_start_time.isoformat() if tick_start_time else None,
            "leagues": list(services.config.leagues),
            "teams": len(services.ledger.list_teams()),
        }

    @app.get("/api/tick")
    async def get_tick():
        return {
            "tick": current_tick,
            "timestamp": datetime.utcnow().isoformat()
        }

    # ==========================
    # ROUTING
    # ==========================

    app.include_router(market_router)
    print("Market routes registered")

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
