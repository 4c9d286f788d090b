from fastapi import FastAPI, HTTPException

from .controller import SessionController
from .errors import ProtocolStateError, TransportError
from .schemas import NodeStatus


def create_app(controller: SessionController) -> FastAPI:
    app = FastAPI(title="Sparkplug B Edge Node")

    @app.get("/")
    def read_root():
        return {
            "service": "Sparkplug B edge node",
            "group_id": controller.node.group_id,
            "node_id": controller.node.node_id,
        }

    @app.get("/health")
    def health():
        state = controller.state.value
        return {"status": "healthy" if state == "online" else "degraded", "state": state}

    @app.get("/status", response_model=NodeStatus)
    def status():
        """Lifecycle state, sequence counters and attached devices"""
        return controller.status()

    @app.post("/rebirth", response_model=NodeStatus)
    def rebirth():
        """Republish NBIRTH (and DBIRTH for online devices) with a new bdSeq"""
        try:
            controller.rebirth()
        except ProtocolStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except TransportError as e:
            raise HTTPException(status_code=503, detail=f"Rebirth failed: {e}")
        return controller.status()

    return app
