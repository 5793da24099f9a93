import logging
from typing import Optional

from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from rules.rule_engine import Rule

from .config import settings
from .dependencies import (
    Services, build_services, get_current_user_id, get_optional_user_id,
    get_reviewer, get_services, require_admin,
)
from .exceptions import (
    AuthorizationError, NotFoundError, RateLimitError, RewardsError,
    StatusConflictError, StorageFailure, ValidationError,
)
from .logging_config import RequestContextMiddleware, configure_logging
from .models import (
    App, AppCategory, AppCreate, Click, PayoutCheckResponse, Payout,
    PayoutStatusRequest, Profile, ReferralSubmission, Reviewer,
    ReviewClickRequest, ReviewClickResponse, SubmissionCreate,
    SubmissionStatus, SubmissionStatusRequest, UpdateUpiRequest, UpdateUpiResponse,
)
from .storage import InMemoryStorage
from .upi import RateLimiter


logger = configure_logging("rewards")

ERROR_STATUS = (
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StatusConflictError, status.HTTP_409_CONFLICT),
)


def _error_response(request: Request, exc: RewardsError) -> JSONResponse:
    if isinstance(exc, StorageFailure):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc), "reference": exc.reference},
        )
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            if code == status.HTTP_403_FORBIDDEN:
                logger.warning(f"Denied {request.method} {request.url.path}: {exc}")
            return JSONResponse(status_code=code, content={"error": str(exc)})
    logger.error(f"Unmapped error at {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


def _validation_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"{location}: {message}" if location else message},
    )


def _unhandled_response(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error at {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    storage: Optional[InMemoryStorage] = None,
    rate_limiter: Optional[RateLimiter] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Referral click tracking, commission review and payout requests",
        version=settings.VERSION,
        debug=settings.DEBUG,
    )
    app.state.services = services or build_services(storage, rate_limiter)

    app.add_exception_handler(RewardsError, _error_response)
    app.add_exception_handler(RequestValidationError, _validation_response)
    app.add_exception_handler(Exception, _unhandled_response)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "referral-rewards"}

    # Privileged functions

    @app.post("/functions/sync-rewards", response_model=ReviewClickResponse, tags=["Review"])
    def review_click(
        request: ReviewClickRequest,
        reviewer: Reviewer = Depends(get_reviewer),
        services: Services = Depends(get_services),
    ) -> ReviewClickResponse:
        result = services.lifecycle.review_click(request.click_id, request.status, reviewer)
        return ReviewClickResponse(
            message=f"Click status updated to {result.click.status.value}",
            click=result.click,
            payout_id=result.payout_id,
        )

    @app.post("/functions/update-upi", response_model=UpdateUpiResponse, tags=["Payouts"])
    def update_upi(
        request: UpdateUpiRequest,
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> UpdateUpiResponse:
        upi_id = services.destinations.set_payout_destination(user_id, request.upi_id)
        return UpdateUpiResponse(message="UPI ID updated successfully", upi_id=upi_id)

    # Catalog and click tracking

    @app.get("/apps", response_model=list[App], tags=["Apps"])
    def list_apps(
        category: Optional[AppCategory] = None,
        featured: bool = False,
        user_id: Optional[str] = Depends(get_optional_user_id),
        services: Services = Depends(get_services),
    ) -> list[App]:
        limit = None
        if featured:
            limit = settings.FEATURED_APPS_SIGNED_IN_LIMIT if user_id else settings.FEATURED_APPS_ANONYMOUS_LIMIT
        return services.catalog.list_apps(category=category, featured_only=featured, limit=limit)

    @app.get("/apps/{app_id}", response_model=App, tags=["Apps"])
    def get_app(app_id: str, services: Services = Depends(get_services)) -> App:
        return services.catalog.get_app(app_id)

    @app.get("/apps/{app_id}/go", tags=["Apps"])
    def follow_referral_link(
        app_id: str,
        request: Request,
        my_referral: bool = False,
        user_id: Optional[str] = Depends(get_optional_user_id),
        services: Services = Depends(get_services),
    ) -> RedirectResponse:
        referred_app = services.catalog.get_app(app_id)
        resolved = services.attribution.resolve(
            user_id,
            request.query_params,
            request.cookies.get(settings.ANONYMOUS_ID_COOKIE),
        )

        click = services.ledger.track_click(app_id, resolved.attribution, is_my_referral=my_referral)
        if click is not None:
            services.auto_reviewer.on_click_recorded(click)

        response = RedirectResponse(referred_app.referral_link, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        if resolved.new_anonymous_id:
            try:
                response.set_cookie(
                    settings.ANONYMOUS_ID_COOKIE,
                    resolved.new_anonymous_id,
                    max_age=settings.ANONYMOUS_ID_TTL_DAYS * 24 * 60 * 60,
                    samesite="lax",
                )
            except Exception as e:
                logger.warning(f"Could not persist anonymous id {resolved.new_anonymous_id}: {e}")
        return response

    @app.post("/admin/apps", response_model=App, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def add_app(
        data: AppCreate,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> App:
        return services.catalog.add_app(data, reviewer)

    @app.delete("/admin/apps/{app_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
    def delete_app(
        app_id: str,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> None:
        services.catalog.delete_app(app_id, reviewer)

    @app.get("/admin/clicks", response_model=list[Click], tags=["Admin"])
    def list_clicks_for_review(
        limit: int = Query(settings.ADMIN_CLICK_PAGE_SIZE, ge=1, le=settings.ADMIN_CLICK_PAGE_SIZE),
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> list[Click]:
        return services.ledger.list_clicks_for_review(limit)

    # Signed-in user views

    @app.get("/me/profile", response_model=Profile, tags=["Users"])
    def get_profile(
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> Profile:
        return services.balances.get_profile(user_id)

    @app.get("/me/clicks", response_model=list[Click], tags=["Users"])
    def list_my_clicks(
        limit: int = Query(settings.DASHBOARD_CLICK_LIMIT, ge=1, le=settings.ADMIN_CLICK_PAGE_SIZE),
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> list[Click]:
        return services.ledger.list_clicks_for_actor(user_id, limit)

    @app.get("/me/payouts", response_model=list[Payout], tags=["Payouts"])
    def list_my_payouts(
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> list[Payout]:
        return services.payouts.list_payouts(user_id)

    @app.post("/me/payouts/check", response_model=PayoutCheckResponse, tags=["Payouts"])
    def check_payout_eligibility(
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> PayoutCheckResponse:
        return PayoutCheckResponse(payout_id=services.payouts.evaluate_payout_eligibility(user_id))

    @app.get("/admin/payouts", response_model=list[Payout], tags=["Admin"])
    def list_payouts(
        limit: int = Query(settings.ADMIN_PAYOUT_PAGE_SIZE, ge=1, le=settings.ADMIN_PAYOUT_PAGE_SIZE),
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> list[Payout]:
        return services.payouts.list_all_payouts(limit)

    @app.post("/admin/payouts/{payout_id}/status", response_model=Payout, tags=["Admin"])
    def update_payout_status(
        payout_id: str,
        request: PayoutStatusRequest,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> Payout:
        return services.payouts.update_payout_status(payout_id, request.status, reviewer)

    # Referral link submissions

    @app.post("/submissions", response_model=ReferralSubmission, status_code=status.HTTP_201_CREATED, tags=["Submissions"])
    def submit_referral(
        data: SubmissionCreate,
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> ReferralSubmission:
        return services.submissions.submit(user_id, data)

    @app.get("/admin/submissions", response_model=list[ReferralSubmission], tags=["Admin"])
    def list_submissions(
        status_filter: Optional[SubmissionStatus] = None,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> list[ReferralSubmission]:
        return services.submissions.list_submissions(status_filter)

    @app.post("/admin/submissions/{submission_id}/status", response_model=ReferralSubmission, tags=["Admin"])
    def set_submission_status(
        submission_id: str,
        request: SubmissionStatusRequest,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> ReferralSubmission:
        return services.submissions.set_status(submission_id, request.status, reviewer)

    # Automated review rules

    @app.get("/admin/rules", tags=["Rules"])
    def list_rules(
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> list[dict]:
        return [r.to_dict() for r in services.auto_reviewer.engine.list_rules()]

    @app.post("/admin/rules", status_code=status.HTTP_201_CREATED, tags=["Rules"])
    def add_rule(
        data: dict = Body(...),
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> dict:
        try:
            rule = Rule.from_dict(data)
            services.auto_reviewer.add_rule(rule)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Invalid rule: {e}")
        logger.info(f"Rule {rule.id} added by {reviewer.user_id}")
        return rule.to_dict()

    @app.delete("/admin/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Rules"])
    def delete_rule(
        rule_id: str,
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> None:
        if not services.auto_reviewer.engine.remove_rule(rule_id):
            raise NotFoundError(f"Rule {rule_id} not found")

    @app.post("/admin/rules/parse", tags=["Rules"])
    def parse_rule(
        text: str = Body(..., embed=True),
        reviewer: Reviewer = Depends(require_admin),
        services: Services = Depends(get_services),
    ) -> dict:
        return services.rule_parser.parse(text)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
