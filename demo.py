import marimo

__generated_with = "0.17.7"
app = marimo.App()


@app.cell
def _():
    from pydantic import BaseModel

    from dirtable import TableBuilder

    return BaseModel, TableBuilder


@app.cell
def _(BaseModel, TableBuilder):
    class Note(BaseModel):
        title: str
        n: int
        tags: list[str] = []

    notes = (
        TableBuilder("tests/fixtures/notes")
        .format("json")
        .model(Note)
        .on_foreign("warn")
        .build()
    )
    return Note, notes


@app.cell
def _(notes):
    sorted(notes.keys())
    return


@app.cell
def _(notes):
    {entry.key: entry.value for entry in notes.iter() if entry.ok}
    return


@app.cell
def _(Note, notes):
    notes.put("scratch", Note(title="Scratch", n=0))
    notes.get("scratch")
    return


@app.cell
def _(notes):
    notes.delete("scratch")
    return


if __name__ == "__main__":
    app.run()
