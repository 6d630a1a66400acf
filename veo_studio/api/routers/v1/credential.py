from fastapi import APIRouter, Depends

from ...security.credential_store import CredentialStore, get_credential_store

router = APIRouter()


@router.get("/credential")
def get_credential(store: CredentialStore = Depends(get_credential_store)):
    # The secret itself is never sent back.
    return {"configured": store.get() is not None}


@router.put("/credential")
def put_credential(payload: dict, store: CredentialStore = Depends(get_credential_store)):
    api_key = (payload.get("api_key") or "").strip()
    store.set(api_key)
    return {"configured": bool(api_key)}


@router.delete("/credential")
def delete_credential(store: CredentialStore = Depends(get_credential_store)):
    store.clear()
    return {"configured": False}
