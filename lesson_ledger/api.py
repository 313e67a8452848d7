from datetime import date
from http import HTTPStatus
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .errors import ErrorCode
from .logging_config import configure_logging
from .models import (
    AddPackageRequest,
    BatchResult,
    BookingEvent,
    CancelPackageRequest,
    CreditRequest,
    CreditResult,
    Eligibility,
    ExpiringPackage,
    FreezeRequest,
    FreezeResult,
    LedgerResult,
    MemberLedger,
    MemberSummary,
    MigrationResult,
    MigrationSummary,
    PackageAssignment,
    ReconcileSummary,
    UnfreezeRequest,
)
from .service import LessonLedgerService

HTTP_STATUS = {
    ErrorCode.MEMBER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CATALOG_PACKAGE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PACKAGE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_FROZEN: status.HTTP_409_CONFLICT,
    ErrorCode.NOT_FROZEN: status.HTTP_409_CONFLICT,
    ErrorCode.MEMBERSHIP_NOT_ACTIVE: status.HTTP_409_CONFLICT,
    ErrorCode.PERSISTENCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_REQUEST: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_FREEZE_WINDOW: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.CORRUPT_RECORD: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_failure(result: LedgerResult) -> None:
    if result.success or result.error is None:
        return
    code = HTTP_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail={"error": result.error.value, "message": result.message})


def get_service(request: Request) -> LessonLedgerService:
    return request.app.state.ledger_service


def create_app(service: Optional[LessonLedgerService] = None) -> FastAPI:
    settings = service.settings if service is not None else get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Multi-package lesson credit ledger with freeze-aware expiry handling",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.ledger_service = service if service is not None else LessonLedgerService(settings=settings)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "lesson-ledger"}

    @app.get("/members", response_model=list[MemberSummary], tags=["Members"])
    def list_members(svc: LessonLedgerService = Depends(get_service)):
        return svc.list_members()

    @app.get("/members/{member_id}/packages", response_model=MemberLedger, tags=["Packages"])
    def get_ledger(member_id: str, svc: LessonLedgerService = Depends(get_service)):
        result = svc.get_ledger(member_id)
        raise_for_failure(result)
        return result

    @app.post(
        "/members/{member_id}/packages",
        response_model=PackageAssignment,
        status_code=status.HTTP_201_CREATED,
        tags=["Packages"],
    )
    def add_package(member_id: str, request: AddPackageRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.add_package(member_id, request.terms, request.assigned_by)
        raise_for_failure(result)
        return result

    @app.post("/members/{member_id}/packages/{package_id}/cancel", response_model=PackageAssignment, tags=["Packages"])
    def cancel_package(
        member_id: str,
        package_id: str,
        request: CancelPackageRequest,
        svc: LessonLedgerService = Depends(get_service),
    ):
        result = svc.cancel_package(member_id, package_id, request.cancelled_by, request.reason)
        raise_for_failure(result)
        return result

    @app.get("/members/{member_id}/eligibility", response_model=Eligibility, tags=["Credits"])
    def can_book(member_id: str, on: date, svc: LessonLedgerService = Depends(get_service)):
        result = svc.can_book(member_id, on)
        if result.error == ErrorCode.MEMBER_NOT_FOUND:
            raise_for_failure(result)
        return result

    @app.post("/members/{member_id}/deductions", response_model=CreditResult, tags=["Credits"])
    def deduct(member_id: str, request: CreditRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.deduct(member_id, request.date, request.note, request.lesson_id)
        raise_for_failure(result)
        return result

    @app.post("/members/{member_id}/refunds", response_model=CreditResult, tags=["Credits"])
    def refund(member_id: str, request: CreditRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.refund(member_id, request.date, request.note, request.lesson_id)
        raise_for_failure(result)
        return result

    @app.post("/booking-events/enrolled", response_model=CreditResult, tags=["Credits"])
    def booking_enrolled(event: BookingEvent, svc: LessonLedgerService = Depends(get_service)):
        result = svc.handle_enrollment(event)
        raise_for_failure(result)
        return result

    @app.post("/booking-events/cancelled", response_model=CreditResult, tags=["Credits"])
    def booking_cancelled(event: BookingEvent, svc: LessonLedgerService = Depends(get_service)):
        result = svc.handle_cancellation(event)
        raise_for_failure(result)
        return result

    @app.post("/members/{member_id}/freeze", response_model=FreezeResult, tags=["Freeze"])
    def freeze(member_id: str, request: FreezeRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.freeze(member_id, request.reason, request.planned_end_date, request.frozen_by)
        raise_for_failure(result)
        return result

    @app.post("/members/{member_id}/unfreeze", response_model=FreezeResult, tags=["Freeze"])
    def unfreeze(member_id: str, request: UnfreezeRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.unfreeze(member_id, request.unfrozen_by, request.reason)
        raise_for_failure(result)
        return result

    @app.post("/freeze-all", response_model=BatchResult, tags=["Freeze"])
    def freeze_all(request: FreezeRequest, svc: LessonLedgerService = Depends(get_service)):
        result = svc.freeze_all(request.reason, request.planned_end_date, request.frozen_by)
        if result.processed_count == 0 and not result.errors:
            raise_for_failure(result)
        return result

    @app.post("/unfreeze-all", response_model=BatchResult, tags=["Freeze"])
    def unfreeze_all(request: UnfreezeRequest, svc: LessonLedgerService = Depends(get_service)):
        return svc.unfreeze_all(request.unfrozen_by, request.reason)

    @app.post("/members/{member_id}/migrate", response_model=MigrationResult, tags=["Maintenance"])
    def migrate_member(member_id: str, svc: LessonLedgerService = Depends(get_service)):
        result = svc.migrate_member(member_id)
        raise_for_failure(result)
        return result

    @app.post("/migrations", response_model=MigrationSummary, tags=["Maintenance"])
    def migrate_all(svc: LessonLedgerService = Depends(get_service)):
        return svc.migrate_all()

    @app.post("/reconcile", response_model=ReconcileSummary, tags=["Maintenance"])
    def reconcile(svc: LessonLedgerService = Depends(get_service)):
        return svc.reconcile()

    @app.get("/packages/expiring", response_model=list[ExpiringPackage], tags=["Packages"])
    def expiring_packages(days_ahead: Optional[int] = None, svc: LessonLedgerService = Depends(get_service)):
        return svc.expiring_packages(days_ahead)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
