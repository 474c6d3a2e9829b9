"""Dashboard view API: tabs, filters, sort and per-tab pagination.

View state (filters, sort key, page per tab) lives on the tracker and is
shared by every client of this single-operator dashboard.
"""

from fastapi import APIRouter, Depends, HTTPException

from tracker.api.deps import require_tracker
from tracker.engine.poll_cycle import PositionTracker
from tracker.schemas.settings import SortStateRead, ViewStateRead
from tracker.services.display import PositionPage, ViewFilters, ViewState
from tracker.utils.constants import VIEW_TABS

router = APIRouter(prefix="/api/view", tags=["view"])


def _state(view_state: ViewState) -> ViewStateRead:
    return ViewStateRead(
        filters=view_state.filters.model_dump(),
        sort=SortStateRead(key=view_state.sort.key, ascending=view_state.sort.ascending),
        pages=dict(view_state.pages),
    )


def _check_tab(tab: str):
    if tab not in VIEW_TABS:
        raise HTTPException(status_code=404, detail=f"Unknown tab: {tab}")


@router.get("/state", response_model=ViewStateRead)
def view_state(tracker: PositionTracker = Depends(require_tracker)):
    return _state(tracker.view_state)


@router.get("/options")
def filter_options(tracker: PositionTracker = Depends(require_tracker)):
    """Distinct assets and traders for the filter dropdowns."""
    return tracker.filter_options()


@router.get("/filters", response_model=ViewFilters)
def get_filters(tracker: PositionTracker = Depends(require_tracker)):
    return tracker.view_state.filters


@router.put("/filters", response_model=ViewStateRead)
def set_filters(filters: ViewFilters, tracker: PositionTracker = Depends(require_tracker)):
    """Replace the filters. Every tab goes back to page 1."""
    tracker.view_state.set_filters(filters)
    return _state(tracker.view_state)


@router.post("/sort/{key}", response_model=ViewStateRead)
def toggle_sort(key: str, tracker: PositionTracker = Depends(require_tracker)):
    try:
        tracker.view_state.toggle_sort(key)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _state(tracker.view_state)


@router.put("/{tab}/page/{page}", response_model=PositionPage)
def set_page(tab: str, page: int, tracker: PositionTracker = Depends(require_tracker)):
    _check_tab(tab)
    tracker.view_state.set_page(tab, page)
    return tracker.view(tab)


@router.get("/{tab}", response_model=PositionPage)
def tab_view(tab: str, tracker: PositionTracker = Depends(require_tracker)):
    _check_tab(tab)
    return tracker.view(tab)
