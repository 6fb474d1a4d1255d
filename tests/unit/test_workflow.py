"""Tests para MaintenanceWorkflow: transiciones atómicas sobre la BD."""

import asyncio
from datetime import UTC, date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from fieldservice.models.enums import (
    MaintenanceEvent,
    MaintenanceStatus,
    MaintenanceType,
    Shift,
    WorkAction,
)
from fieldservice.models.maintenance import MaintenanceRecord
from fieldservice.models.technician import Technician
from fieldservice.persistence.errors import ConflictError, RecordNotFoundError
from fieldservice.persistence.repository import MaintenanceRepository
from fieldservice.persistence.technician_repository import TechnicianRepository
from fieldservice.services.maintenance_workflow import MaintenanceWorkflow
from fieldservice.services.technician_directory import TechnicianDirectory
from fieldservice.workflow.errors import Guard, GuardViolation, IllegalTransition

NOW = datetime(2024, 5, 20, 9, 30, tzinfo=UTC)
BOGOTA = timezone(timedelta(hours=-5))
DAY = date(2024, 6, 1)


# ── Helpers ──────────────────────────────────────────────────────


@pytest.fixture
async def repo(tmp_path: Path) -> MaintenanceRepository:
    repository = MaintenanceRepository(tmp_path / "maintenances.db")
    await repository.initialize()
    technicians = TechnicianRepository(tmp_path / "maintenances.db")
    await technicians.upsert(Technician(id=1, name="Ana Gómez", specialty="Refrigeración"))
    await technicians.upsert(Technician(id=2, name="Luis Pardo", specialty="Eléctrica"))
    return repository


class _Clock:
    """Reloj fijo que los tests pueden adelantar."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def workflow(repo: MaintenanceRepository, clock: _Clock) -> MaintenanceWorkflow:
    directory = TechnicianDirectory(TechnicianRepository(repo._db_path), repo)
    return MaintenanceWorkflow(repository=repo, directory=directory, clock=clock)


async def _ready_to_assign(workflow: MaintenanceWorkflow) -> MaintenanceRecord:
    record = await workflow.create(MaintenanceType.PREVENTIVE, device_ids=[10, 11], client_id=7)
    return await workflow.mark_no_payment_required(record.id)


async def _assigned(
    workflow: MaintenanceWorkflow, technician_id: int = 1, shift: Shift = Shift.AM
) -> MaintenanceRecord:
    record = await _ready_to_assign(workflow)
    return await workflow.assign_technician(record.id, technician_id, DAY, shift)


def _make_record(status: MaintenanceStatus = MaintenanceStatus.PENDING) -> MaintenanceRecord:
    return MaintenanceRecord(id=1, type=MaintenanceType.CORRECTIVE, status=status, version=3)


# ── Flujo completo ───────────────────────────────────────────────


class TestLifecycle:
    async def test_create_queda_pendiente(self, workflow: MaintenanceWorkflow) -> None:
        record = await workflow.create(
            MaintenanceType.CORRECTIVE,
            device_ids=[10],
            description="Fuga de gas",
            device_descriptions={10: "Nevera industrial"},
        )
        assert record.status == MaintenanceStatus.PENDING
        assert record.devices[0].description == "Nevera industrial"
        assert record.created_at == NOW

        events = await workflow.available_events(record.id)
        assert MaintenanceEvent.SUBMIT_QUOTATION in events

    async def test_pago_asignacion_y_cierre(self, workflow: MaintenanceWorkflow) -> None:
        record = await workflow.create(MaintenanceType.PREVENTIVE, device_ids=[10])
        record = await workflow.submit_quotation(record.id, 150000, "doc://abc")
        record = await workflow.upload_payment_proof(record.id, "doc://proof")
        record = await workflow.verify_payment(record.id, accepted=True)
        assert record.status == MaintenanceStatus.QUOTED
        assert record.payment.is_paid is True

        record = await workflow.assign_technician(record.id, 1, DAY, Shift.AM)
        assert record.status == MaintenanceStatus.ASSIGNED

        record = await workflow.start_work(record.id)
        record = await workflow.update_device_progress(record.id, 10, [0, 1], items_total=2)
        summary = await workflow.progress_summary(record.id)
        assert summary.all_completed is True

        record = await workflow.complete_work(record.id)
        assert record.status == MaintenanceStatus.COMPLETED
        assert [a.action for a in record.action_log] == [WorkAction.START, WorkAction.END]

        loaded = await workflow.get(record.id)
        assert loaded.status == MaintenanceStatus.COMPLETED
        assert loaded.version == record.version

    async def test_asignar_con_pago_pendiente(self, workflow: MaintenanceWorkflow) -> None:
        record = await workflow.create(MaintenanceType.PREVENTIVE, device_ids=[10])
        record = await workflow.submit_quotation(record.id, 150000, "doc://abc")

        with pytest.raises(GuardViolation) as exc_info:
            await workflow.assign_technician(record.id, 1, DAY, Shift.AM)
        assert exc_info.value.guard == Guard.PAYMENT_PENDING

        loaded = await workflow.get(record.id)
        assert loaded.technician_id is None
        assert loaded.version == record.version

    async def test_completar_con_equipos_pendientes(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        await workflow.start_work(record.id)
        await workflow.update_device_progress(record.id, 10, [0], items_total=1)

        with pytest.raises(GuardViolation) as exc_info:
            await workflow.complete_work(record.id)
        assert exc_info.value.guard == Guard.DEVICES_INCOMPLETE

        loaded = await workflow.get(record.id)
        assert loaded.status == MaintenanceStatus.IN_PROGRESS

    async def test_completar_consulta_progreso_externo(self, repo: MaintenanceRepository) -> None:
        directory = AsyncMock()
        directory.is_available.return_value = True
        progress = AsyncMock()
        progress.all_devices_completed.return_value = True
        workflow = MaintenanceWorkflow(
            repository=repo, directory=directory, device_progress=progress, clock=lambda: NOW
        )

        record = await _assigned(workflow)
        await workflow.start_work(record.id)
        record = await workflow.complete_work(record.id)

        assert record.status == MaintenanceStatus.COMPLETED
        progress.all_devices_completed.assert_awaited_once_with(record.id)

    async def test_operacion_sobre_id_inexistente(self, workflow: MaintenanceWorkflow) -> None:
        with pytest.raises(RecordNotFoundError):
            await workflow.approve(999)


# ── Asignación concurrente ───────────────────────────────────────


class TestAssignment:
    async def test_doble_reserva_concurrente(self, workflow: MaintenanceWorkflow) -> None:
        """Dos asignaciones simultáneas del mismo técnico/turno: solo una gana."""
        first = await _ready_to_assign(workflow)
        second = await _ready_to_assign(workflow)

        results = await asyncio.gather(
            workflow.assign_technician(first.id, 1, DAY, Shift.AM),
            workflow.assign_technician(second.id, 1, DAY, Shift.AM),
            return_exceptions=True,
        )

        assigned = [r for r in results if isinstance(r, MaintenanceRecord)]
        failed = [r for r in results if isinstance(r, GuardViolation)]
        assert len(assigned) == 1
        assert len(failed) == 1
        assert failed[0].guard == Guard.TECHNICIAN_UNAVAILABLE

    async def test_asignar_desde_pending_no_consulta_directorio(
        self, repo: MaintenanceRepository
    ) -> None:
        directory = AsyncMock()
        workflow = MaintenanceWorkflow(repository=repo, directory=directory, clock=lambda: NOW)
        record = await workflow.create(MaintenanceType.PREVENTIVE, device_ids=[10])

        with pytest.raises(IllegalTransition):
            await workflow.assign_technician(record.id, 1, DAY, Shift.AM)
        directory.is_available.assert_not_awaited()

    async def test_error_del_directorio_se_propaga(self, repo: MaintenanceRepository) -> None:
        directory = AsyncMock()
        directory.is_available.side_effect = RuntimeError("directorio caído")
        workflow = MaintenanceWorkflow(repository=repo, directory=directory, clock=lambda: NOW)
        record = await _ready_to_assign(workflow)

        with pytest.raises(RuntimeError, match="directorio caído"):
            await workflow.assign_technician(record.id, 1, DAY, Shift.AM)

        loaded = await workflow.get(record.id)
        assert loaded.status == MaintenanceStatus.QUOTED
        assert loaded.technician_id is None


class TestRescheduleAndCancel:
    async def test_reagendar_libera_turno_anterior(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow, technician_id=1, shift=Shift.AM)
        moved = await workflow.reschedule(record.id, DAY, Shift.PM)
        assert moved.shift == Shift.PM
        assert moved.status == MaintenanceStatus.ASSIGNED

        other = await _assigned(workflow, technician_id=1, shift=Shift.AM)
        assert other.technician_id == 1

    async def test_reagendar_al_mismo_turno(self, workflow: MaintenanceWorkflow) -> None:
        """Mismo técnico, fecha y turno: no se guarda nada ni se pierde la confirmación."""
        record = await _assigned(workflow)
        await workflow.request_confirmation(record.id)
        confirmed = await workflow.confirm_by_client(record.id)

        moved = await workflow.reschedule(record.id, DAY, Shift.AM)

        assert moved.technician_id == 1
        assert moved.version == confirmed.version
        assert moved.confirmation == confirmed.confirmation
        loaded = await workflow.get(record.id)
        assert loaded.confirmation.confirmed_at == NOW

    async def test_reagendar_a_turno_ocupado(self, workflow: MaintenanceWorkflow) -> None:
        await _assigned(workflow, technician_id=2, shift=Shift.PM)
        record = await _assigned(workflow, technician_id=1, shift=Shift.AM)

        with pytest.raises(GuardViolation) as exc_info:
            await workflow.reschedule(record.id, DAY, Shift.PM, technician_id=2)
        assert exc_info.value.guard == Guard.TECHNICIAN_UNAVAILABLE

        loaded = await workflow.get(record.id)
        assert (loaded.technician_id, loaded.shift) == (1, Shift.AM)

    async def test_cancelar_libera_tecnico(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        cancelled = await workflow.cancel(record.id)
        assert cancelled.status == MaintenanceStatus.CANCELLED
        assert cancelled.technician_id is None

        other = await _assigned(workflow)
        assert other.status == MaintenanceStatus.ASSIGNED

        with pytest.raises(IllegalTransition):
            await workflow.cancel(record.id)


# ── Confirmación ─────────────────────────────────────────────────


class TestConfirmation:
    async def test_plazo_por_defecto(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        record = await workflow.request_confirmation(record.id)
        assert record.confirmation.confirmation_required is True
        assert record.confirmation.confirmation_deadline == NOW + timedelta(hours=24)

    async def test_confirmar_dos_veces_es_idempotente(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        await workflow.request_confirmation(record.id)
        confirmed = await workflow.confirm_by_client(record.id)
        again = await workflow.confirm_by_client(record.id)

        assert again.confirmation.confirmed_at == NOW
        assert again.version == confirmed.version

    async def test_notificar_antes_del_plazo_no_guarda(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        record = await workflow.request_confirmation(record.id, NOW + timedelta(hours=2))
        result = await workflow.notify_coordinator_if_overdue(record.id)

        assert result.confirmation.coordinator_notified is False
        assert result.version == record.version

    async def test_escenario_c_plazo_vencido(self, workflow: MaintenanceWorkflow) -> None:
        record = await _assigned(workflow)
        await workflow.request_confirmation(record.id, NOW - timedelta(minutes=1))

        result = await workflow.notify_coordinator_if_overdue(record.id)
        assert result.confirmation.coordinator_notified is True
        assert result.confirmation.coordinator_notified_at == NOW
        assert result.status == MaintenanceStatus.ASSIGNED

        called = await workflow.mark_coordinator_called(record.id)
        assert called.confirmation.coordinator_called is True

    async def test_reagendar_conserva_confirmacion(
        self, workflow: MaintenanceWorkflow, clock: _Clock
    ) -> None:
        """La confirmación del cliente se registra una sola vez, aunque se reagende."""
        record = await _assigned(workflow)
        await workflow.request_confirmation(record.id)
        await workflow.confirm_by_client(record.id)

        moved = await workflow.reschedule(
            record.id, DAY, Shift.PM, confirmation_deadline=NOW + timedelta(days=2)
        )
        assert moved.confirmation.confirmed_at == NOW
        assert moved.confirmation.confirmation_deadline == NOW + timedelta(days=2)

        clock.now = NOW + timedelta(hours=1)
        again = await workflow.confirm_by_client(record.id)

        assert again.confirmation.confirmed_at == NOW
        assert again.version == moved.version


class TestTimezones:
    async def test_plazo_con_zona_vencido(
        self, workflow: MaintenanceWorkflow, repo: MaintenanceRepository
    ) -> None:
        record = await _assigned(workflow)
        # 04:00 en Bogotá = 09:00 UTC, antes de NOW (09:30 UTC)
        deadline = datetime(2024, 5, 20, 4, 0, tzinfo=BOGOTA)
        await workflow.request_confirmation(record.id, deadline)

        overdue = await repo.list_overdue_confirmations(NOW)
        assert [r.id for r in overdue] == [record.id]

        result = await workflow.notify_coordinator_if_overdue(record.id)
        assert result.confirmation.coordinator_notified is True
        assert result.confirmation.confirmation_deadline == deadline
        assert result.confirmation.confirmation_deadline.utcoffset() == timedelta(0)

    async def test_plazo_con_zona_no_vencido(
        self, workflow: MaintenanceWorkflow, repo: MaintenanceRepository
    ) -> None:
        """Como texto '05:00-05:00' es menor que '09:30+00:00', pero es 10:00 UTC."""
        record = await _assigned(workflow)
        deadline = datetime(2024, 5, 20, 5, 0, tzinfo=BOGOTA)
        await workflow.request_confirmation(record.id, deadline)

        assert await repo.list_overdue_confirmations(NOW) == []
        result = await workflow.notify_coordinator_if_overdue(record.id)
        assert result.confirmation.coordinator_notified is False

    async def test_fechas_naive_en_zona_configurada(self, repo: MaintenanceRepository) -> None:
        directory = TechnicianDirectory(TechnicianRepository(repo._db_path), repo)
        workflow = MaintenanceWorkflow(
            repository=repo,
            directory=directory,
            clock=lambda: datetime(2024, 5, 20, 4, 30),
            timezone=BOGOTA,
        )
        record = await _assigned(workflow)
        await workflow.request_confirmation(record.id, datetime(2024, 5, 20, 4, 0))

        result = await workflow.notify_coordinator_if_overdue(record.id)
        assert result.confirmation.coordinator_notified is True
        assert result.confirmation.coordinator_notified_at == NOW
        assert result.confirmation.confirmation_deadline == NOW - timedelta(minutes=30)


# ── Conflictos de version ────────────────────────────────────────


class TestConflictRetry:
    async def test_reintenta_una_vez(self) -> None:
        repo = AsyncMock()
        repo.load.return_value = _make_record()
        saved = _make_record(MaintenanceStatus.REJECTED)
        repo.save.side_effect = [ConflictError(1, 3), saved]
        workflow = MaintenanceWorkflow(repository=repo, directory=AsyncMock(), clock=lambda: NOW)

        result = await workflow.reject(1, "Duplicado")

        assert result is saved
        assert repo.load.await_count == 2
        assert repo.save.await_count == 2

    async def test_segundo_conflicto_se_propaga(self) -> None:
        repo = AsyncMock()
        repo.load.return_value = _make_record()
        repo.save.side_effect = [ConflictError(1, 3), ConflictError(1, 4)]
        workflow = MaintenanceWorkflow(repository=repo, directory=AsyncMock(), clock=lambda: NOW)

        with pytest.raises(ConflictError):
            await workflow.reject(1)
        assert repo.save.await_count == 2

    async def test_reintento_reevalua_guards(self) -> None:
        """Si otro escritor cambió el estado, el reintento aplica los guards al estado nuevo."""
        repo = AsyncMock()
        repo.load.side_effect = [
            _make_record(),
            _make_record(MaintenanceStatus.CANCELLED),
        ]
        repo.save.side_effect = [ConflictError(1, 3)]
        workflow = MaintenanceWorkflow(repository=repo, directory=AsyncMock(), clock=lambda: NOW)

        with pytest.raises(IllegalTransition):
            await workflow.reject(1)
        assert repo.save.await_count == 1
