"""Main entry point for the Orders Service."""

import uvicorn

from orders_service.server import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
