"""Prompt assistance routes: title suggestion and prompt enhancement."""

from typing import Annotated

from fastapi import APIRouter, Depends

from polychat.api.deps import get_llm_router
from polychat.auth.middleware import Viewer, get_viewer
from polychat.config import get_settings
from polychat.responses import success_response
from polychat.schemas.prompts import EnhancedPromptOut, PromptRequest, TitleOut
from polychat.services import assist as assist_service
from polychat.services.llm import LLMRouter

router = APIRouter(prefix="/prompts", tags=["prompts"])


@router.post("/title")
async def generate_title(
    body: PromptRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
) -> dict:
    """Suggest a short chat title. Falls back to "New Chat", never fails."""
    title = await assist_service.generate_title(
        llm_router, get_settings().assist_model, body.prompt
    )
    return success_response(TitleOut(title=title).model_dump(mode="json"))


@router.post("/enhance")
async def enhance_prompt(
    body: PromptRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
) -> dict:
    """Rewrite a prompt to be clearer, and say whether the rewrite is reliable.

    Errors:
        E_LLM_UNAVAILABLE (502): the gateway call failed.
    """
    result = await assist_service.enhance_prompt(
        llm_router, get_settings().assist_model, body.prompt
    )
    out = EnhancedPromptOut(enhanced_prompt=result.enhanced_prompt, is_reliable=result.is_reliable)
    return success_response(out.model_dump(mode="json"))
