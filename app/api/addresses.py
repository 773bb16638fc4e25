"""
app/api/addresses.py

Purpose: Saved address endpoints
"""

from fastapi import APIRouter

from app.api.deps import action_response
from app.schemas.address import AddressRequest, AddressUpdateRequest
from app.services import address_service

router = APIRouter()


@router.post("/users/{user_id}/addresses")
async def create_address(user_id: str, request: AddressRequest):
    result = await address_service.create_address(user_id, request.model_dump(mode="json"))
    return action_response(result)


@router.get("/users/{user_id}/addresses")
async def list_addresses(user_id: str):
    return action_response(await address_service.get_user_addresses(user_id))


@router.get("/users/{user_id}/addresses/{address_id}")
async def get_address(user_id: str, address_id: str):
    return action_response(await address_service.get_address(user_id, address_id))


@router.patch("/users/{user_id}/addresses/{address_id}")
async def update_address(user_id: str, address_id: str, request: AddressUpdateRequest):
    fields = request.model_dump(mode="json", exclude_none=True)
    return action_response(await address_service.update_address(user_id, address_id, fields))


@router.put("/users/{user_id}/addresses/{address_id}/default")
async def set_default_address(user_id: str, address_id: str):
    return action_response(await address_service.set_default_address(user_id, address_id))


@router.delete("/users/{user_id}/addresses/{address_id}")
async def delete_address(user_id: str, address_id: str):
    return action_response(await address_service.delete_address(user_id, address_id))
