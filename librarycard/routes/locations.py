import sqlite3

from fastapi import APIRouter, Body, Depends, Query

from librarycard import locations
from librarycard.dependencies import get_current_user_id, get_db
from librarycard.schemas import LocationModel, ShelfDeleteModel, ShelfModel

router = APIRouter(prefix="/api", tags=["locations"])


@router.get("/locations")
def list_locations(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return locations.list_locations(conn, user_id)


@router.post("/locations")
def create_location(
    payload: LocationModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return locations.create_location(conn, user_id, payload.name, payload.description)


# Konum kimliği yol veya ?id= sorgu parametresi olarak gelebilir
@router.put("/locations")
@router.put("/locations/{location_id}")
def update_location(
    payload: LocationModel,
    location_id: int | None = None,
    id: int | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    target = location_id if location_id is not None else id
    return locations.update_location(conn, user_id, target, payload.name, payload.description)


@router.delete("/locations")
@router.delete("/locations/{location_id}")
def delete_location(
    location_id: int | None = None,
    id: int | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    target = location_id if location_id is not None else id
    return locations.delete_location(conn, user_id, target)


@router.post("/locations/{location_id}/leave")
def leave_location(
    location_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return locations.leave_location(conn, user_id, location_id)


@router.get("/locations/{location_id}/shelves")
def list_shelves(
    location_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return locations.list_shelves(conn, user_id, location_id)


@router.post("/locations/{location_id}/shelves")
def create_shelf(
    location_id: int,
    payload: ShelfModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return locations.create_shelf(conn, user_id, location_id, payload.name)


@router.put("/shelves/{shelf_id}")
def update_shelf(
    shelf_id: int,
    payload: ShelfModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return locations.update_shelf(conn, user_id, shelf_id, payload.name)


@router.delete("/shelves/{shelf_id}")
def delete_shelf(
    shelf_id: int,
    payload: ShelfDeleteModel | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    options = payload or ShelfDeleteModel()
    return locations.delete_shelf(
        conn,
        user_id,
        shelf_id,
        target_shelf_id=options.target_shelf_id,
        create_new_shelf=options.create_new_shelf,
        confirm_delete_books=options.confirm_delete_books,
    )
