from pydantic import BaseModel, ConfigDict, Field


class UploadForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filetype: str = Field(default="")
