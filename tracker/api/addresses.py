"""CRUD API for tracked wallet addresses."""

from fastapi import APIRouter, Depends, HTTPException

from tracker.api.deps import get_store
from tracker.errors import DuplicateError
from tracker.schemas.wallet_address import (
    NotificationToggle,
    WalletAddressCreate,
    WalletAddressRead,
    WalletAddressUpdate,
    normalize_address,
)
from tracker.services.store import TrackedPositionStore

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


def _path_address(address: str) -> str:
    try:
        return normalize_address(address)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("", response_model=list[WalletAddressRead])
def list_addresses(store: TrackedPositionStore = Depends(get_store)):
    return store.list_addresses()


@router.post("", response_model=WalletAddressRead, status_code=201)
def add_address(data: WalletAddressCreate, store: TrackedPositionStore = Depends(get_store)):
    try:
        return store.add_address(**data.model_dump())
    except DuplicateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{address}", response_model=WalletAddressRead)
def get_address(address: str, store: TrackedPositionStore = Depends(get_store)):
    wallet = store.get_address(_path_address(address))
    if wallet is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return wallet


@router.put("/{address}", response_model=WalletAddressRead)
def update_address(
    address: str,
    data: WalletAddressUpdate,
    store: TrackedPositionStore = Depends(get_store),
):
    wallet = store.update_address(_path_address(address), **data.model_dump(exclude_unset=True))
    if wallet is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return wallet


@router.post("/{address}/notifications", response_model=WalletAddressRead)
def set_notifications(
    address: str,
    data: NotificationToggle,
    store: TrackedPositionStore = Depends(get_store),
):
    wallet = store.set_notifications(_path_address(address), data.enabled)
    if wallet is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return wallet


@router.delete("/{address}", status_code=204)
def remove_address(address: str, store: TrackedPositionStore = Depends(get_store)):
    if not store.remove_address(_path_address(address)):
        raise HTTPException(status_code=404, detail="Address not found")
