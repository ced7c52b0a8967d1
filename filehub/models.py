from pydantic import BaseModel, ConfigDict, Field as RecordField
from sqlmodel import SQLModel, Field


class StoreEntry(SQLModel, table=True):
    scope: str = Field(primary_key=True)  # "shared" or the owning user's private scope
    key: str = Field(primary_key=True)
    value: str


class FileRecord(BaseModel):
    """A shared file: metadata plus its data URI payload.

    Serialized with the field names other readers of the shared store expect:
    ``{id, name, size, type, uploadedAt, uploadedBy, data}``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str = RecordField(min_length=1)
    size: int = RecordField(ge=0)
    media_type: str = RecordField(default="", alias="type")
    created_at: str = RecordField(alias="uploadedAt")
    uploaded_by: str = RecordField(alias="uploadedBy")
    payload: str = RecordField(alias="data")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, value: str) -> "FileRecord":
        return cls.model_validate_json(value)

    def summary(self) -> dict:
        """Metadata without the payload, for listings."""
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "type": self.media_type,
            "uploadedAt": self.created_at,
            "uploadedBy": self.uploaded_by,
        }
