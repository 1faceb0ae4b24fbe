import json
from dataclasses import replace

from ..library import PromptLibrary
from ..template import extract_variables
from ..views import FilterType


def _summary(record) -> dict:
    return {
        "id": record.id,
        "title": record.title,
        "tags": record.tags,
        "variables": extract_variables(record.template),
        "is_favorite": record.is_favorite,
        "updated_at": record.updated_at,
        "last_used_at": record.last_used_at,
    }


def register_tools(mcp, library: PromptLibrary) -> None:
    started = False

    async def ready() -> PromptLibrary:
        nonlocal started
        if not started:
            started = True
            await library.start()
        return library

    @mcp.tool()
    async def prompt_list(view: str = "all", tag: str | None = None) -> str:
        """List prompts. view is one of all, favorites, recent, tag."""
        try:
            filter_type = FilterType(view)
        except ValueError:
            valid = ", ".join(f.value for f in FilterType)
            raise ValueError(f"Unknown view {view!r}, expected one of: {valid}") from None
        lib = await ready()
        return json.dumps([_summary(r) for r in lib.view(filter_type, tag)])

    @mcp.tool()
    async def prompt_get(prompt_id: str) -> str:
        """Get a prompt by id, without its version history."""
        lib = await ready()
        data = lib.get(prompt_id).to_dict()
        data["versions"] = len(data.pop("history"))
        return json.dumps(data)

    @mcp.tool()
    async def prompt_use(
        prompt_id: str,
        variables: dict[str, str] | None = None,
    ) -> str:
        """Fill a prompt's {{variables}} and return the text. Marks the prompt as used."""
        lib = await ready()
        filled = lib.use(prompt_id, variables or {})
        record = lib.get(prompt_id)
        return json.dumps(
            {
                "id": record.id,
                "system_instruction": record.system_instruction,
                "filled": filled,
            }
        )

    @mcp.tool()
    async def prompt_save(
        template: str,
        title: str = "",
        description: str = "",
        system_instruction: str = "",
        tags: list[str] | None = None,
        prompt_id: str | None = None,
    ) -> str:
        """Create a prompt, or update it when prompt_id is given. Variables use {{name}} syntax."""
        lib = await ready()
        base = lib.get(prompt_id) if prompt_id else lib.new_record()
        record = replace(
            base,
            title=title or base.title,
            description=description or base.description,
            system_instruction=system_instruction or base.system_instruction,
            template=template,
            tags=list(tags) if tags is not None else list(base.tags),
        )
        saved = lib.save(record)
        return json.dumps(
            {
                "status": "saved",
                "id": saved.id,
                "variables": extract_variables(saved.template),
                "versions": len(saved.history),
            }
        )

    @mcp.tool()
    async def prompt_tags() -> str:
        """List tags, most used first."""
        lib = await ready()
        return json.dumps(lib.tags())

    @mcp.tool()
    async def prompt_delete(prompt_id: str, confirm: bool = False) -> str:
        """Delete a prompt. Nothing happens unless confirm is true."""
        lib = await ready()
        deleted = lib.delete(prompt_id, lambda _message: confirm)
        return json.dumps({"status": "deleted" if deleted else "cancelled", "id": prompt_id})
