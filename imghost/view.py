from pathlib import Path

from fastapi import Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from imghost.services.storage import StoredObject


class IndexView:
    """The listing page, rendered from a single Jinja2 template file.

    The Jinja2 environment compiles the template on first use and keeps it;
    a failed load is not cached, so fixing the file recovers the page.
    """

    def __init__(self, template_path: str | Path) -> None:
        path = Path(template_path)
        self.name = path.name
        self.templates = Jinja2Templates(directory=str(path.parent.resolve()))
        self.templates.env.auto_reload = False

    def render(
        self, request: Request, items: list[StoredObject], next_cursor: str
    ) -> HTMLResponse:
        return self.templates.TemplateResponse(
            request,
            self.name,
            {"items": items, "next_cursor": next_cursor},
        )
