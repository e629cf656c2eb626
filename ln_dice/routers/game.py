import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from fastapi.responses import StreamingResponse

from ln_dice.errors import SessionBusyError
from ln_dice.manager import SessionManager
from ln_dice.models.dc_models import GameSessionModel, PotModel
from ln_dice.session_machine import GameSessionMachine
from ln_dice.state_notifier import event_generator

game_router = APIRouter()


def get_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_machine(
    session_id: UUID, manager: SessionManager = Depends(get_manager)
) -> GameSessionMachine:
    """Look up the session or answer 404."""
    machine = manager.get_session(session_id)
    if machine is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
        )
    return machine


def busy(e: SessionBusyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


class PotAPI:
    @staticmethod
    @game_router.get("/pot", response_model=PotModel)
    async def get_pot(manager: SessionManager = Depends(get_manager)):
        return manager.pot_ledger.snapshot()


class SessionAPI:
    @staticmethod
    @game_router.post(
        "/sessions", response_model=GameSessionModel, status_code=status.HTTP_201_CREATED
    )
    async def create_session(manager: SessionManager = Depends(get_manager)):
        machine = manager.create_session()
        return machine.snapshot()

    @staticmethod
    @game_router.get("/sessions/{session_id}", response_model=GameSessionModel)
    async def get_session(machine: GameSessionMachine = Depends(get_machine)):
        return machine.snapshot()

    @staticmethod
    @game_router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_session(
        session_id: UUID, manager: SessionManager = Depends(get_manager)
    ):
        if not manager.remove_session(session_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
            )

    @staticmethod
    @game_router.get("/sessions/{session_id}/events")
    async def session_events(machine: GameSessionMachine = Depends(get_machine)):
        return StreamingResponse(
            event_generator(machine.notifier, machine.snapshot),
            media_type="text/event-stream",
        )


class GameAPI:
    @staticmethod
    @game_router.post(
        "/sessions/{session_id}/guess/{guess}", response_model=GameSessionModel
    )
    async def select_guess(
        guess: int = Path(ge=1, le=6),
        machine: GameSessionMachine = Depends(get_machine),
    ):
        try:
            await machine.select_guess(guess)
        except SessionBusyError as e:
            raise busy(e)
        logging.info(f"Session {machine.session_id}: state {machine.state.value}")
        return machine.snapshot()

    @staticmethod
    @game_router.post("/sessions/{session_id}/check-payment", response_model=GameSessionModel)
    async def check_payment(machine: GameSessionMachine = Depends(get_machine)):
        try:
            machine.check_payment()
        except SessionBusyError as e:
            raise busy(e)
        return machine.snapshot()

    @staticmethod
    @game_router.post("/sessions/{session_id}/retry-payout", response_model=GameSessionModel)
    async def retry_payout(machine: GameSessionMachine = Depends(get_machine)):
        try:
            await machine.retry_payout()
        except SessionBusyError as e:
            raise busy(e)
        return machine.snapshot()

    @staticmethod
    @game_router.post("/sessions/{session_id}/reset", response_model=GameSessionModel)
    async def reset(machine: GameSessionMachine = Depends(get_machine)):
        machine.reset()
        return machine.snapshot()
