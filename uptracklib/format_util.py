import click


def stringify(val):
    """
    Accepts either str or bytes and returns a str
    """
    try:
        val = val.decode("utf-8")
    except (UnicodeDecodeError, AttributeError):
        pass
    return val


def red_print(msg, file=None):
    """Print out a message in red text, like for "Error: " messages"""
    click.secho(stringify(msg), nl=True, bold=False, fg="red", file=file)


def green_print(msg, file=None):
    """Print out a message in green text"""
    click.secho(stringify(msg), nl=True, bold=False, fg="green", file=file)


def md_code(value) -> str:
    """Render a value as inline markdown code, escaping backticks"""
    return "`" + str(value).replace("`", "\\`") + "`"


def md_table(header, rows) -> str:
    """
    Render a markdown table.
    :param header: List of column titles
    :param rows: List of rows, each a list of cell strings. Newlines in cells become <br>.
    """

    def _row(cells):
        return "| " + " | ".join(str(c).replace("|", "\\|").replace("\n", "<br>") for c in cells) + " |"

    lines = [_row(header), "| " + " | ".join("---" for _ in header) + " |"]
    lines.extend(_row(r) for r in rows)
    return "\n".join(lines)
