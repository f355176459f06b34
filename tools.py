import json
from typing import Optional

from langchain_core.tools import tool
from sqlalchemy.engine import Engine

from database import fetch_rows, serialize_rows

CUSTOMER_NOT_VERIFIED = json.dumps({
    "error": "CUSTOMER_NOT_VERIFIED",
    "message": "Customer ID not found in state. Customer must be verified first.",
})


def no_results(message: str) -> str:
    return json.dumps({"error": "NO_RESULTS", "message": message})


# ---------------- Music catalog tools (public) ----------------
def create_music_tools(engine: Engine) -> list:

    @tool
    def get_albums_by_artist(artist: str) -> str:
        """Get albums by an artist."""
        rows = fetch_rows(engine, """
            SELECT Album.Title, Artist.Name
            FROM Album
            JOIN Artist ON Album.ArtistId = Artist.ArtistId
            WHERE Artist.Name LIKE :pattern
            LIMIT 8;
        """, {"pattern": f"%{artist}%"})
        return serialize_rows(rows)

    @tool
    def get_tracks_by_artist(artist: str) -> str:
        """Get songs by an artist (or similar artists)."""
        rows = fetch_rows(engine, """
            SELECT Track.Name AS SongName, Artist.Name AS ArtistName
            FROM Album
            LEFT JOIN Artist ON Album.ArtistId = Artist.ArtistId
            LEFT JOIN Track ON Track.AlbumId = Album.AlbumId
            WHERE Artist.Name LIKE :pattern
            LIMIT 8;
        """, {"pattern": f"%{artist}%"})
        return serialize_rows(rows)

    @tool
    def get_songs_by_genre(genre: str) -> str:
        """Fetch songs from the database that match a specific genre."""
        genre_rows = fetch_rows(
            engine,
            "SELECT GenreId FROM Genre WHERE Name LIKE :pattern LIMIT 8;",
            {"pattern": f"%{genre}%"},
        )
        if not genre_rows:
            return no_results(f"No songs found for the genre: {genre}")

        genre_ids = [row["GenreId"] for row in genre_rows]
        placeholders = ", ".join(f":g{i}" for i in range(len(genre_ids)))
        rows = fetch_rows(engine, f"""
            SELECT Track.Name AS SongName, Artist.Name AS ArtistName
            FROM Track
            LEFT JOIN Album ON Track.AlbumId = Album.AlbumId
            LEFT JOIN Artist ON Album.ArtistId = Artist.ArtistId
            WHERE Track.GenreId IN ({placeholders})
            GROUP BY Artist.Name
            LIMIT 8;
        """, {f"g{i}": gid for i, gid in enumerate(genre_ids)})
        return serialize_rows(rows)

    @tool
    def check_for_songs(song_title: str) -> str:
        """Check if a song exists by its name."""
        rows = fetch_rows(
            engine,
            "SELECT * FROM Track WHERE Name LIKE :pattern LIMIT 8;",
            {"pattern": f"%{song_title}%"},
        )
        return serialize_rows(rows)

    return [get_albums_by_artist, get_tracks_by_artist, get_songs_by_genre, check_for_songs]


# ---------------- Invoice tools (customer scoped) ----------------
def create_invoice_tools(engine: Engine, customer_id: Optional[int]) -> list:
    """
    Build the invoice tools with the verified customer id bound in.

    The id is never a tool argument, so the model cannot supply or override it.
    Without an id every tool returns CUSTOMER_NOT_VERIFIED and issues no query.
    """

    @tool
    def get_invoices_by_customer_sorted_by_date() -> str:
        """Look up all invoices for the current customer. The invoices are sorted in descending order by invoice date. The customer ID is automatically retrieved from the state."""
        if customer_id is None:
            return CUSTOMER_NOT_VERIFIED
        rows = fetch_rows(
            engine,
            "SELECT * FROM Invoice WHERE CustomerId = :cid ORDER BY InvoiceDate DESC;",
            {"cid": customer_id},
        )
        return serialize_rows(rows)

    @tool
    def get_invoices_sorted_by_unit_price() -> str:
        """Use this tool when the customer wants to know the details of one of their invoices based on the unit price/cost. This tool looks up all invoices for the current customer and sorts by unit price. The customer ID is automatically retrieved from the state."""
        if customer_id is None:
            return CUSTOMER_NOT_VERIFIED
        rows = fetch_rows(engine, """
            SELECT Invoice.*, InvoiceLine.UnitPrice
            FROM Invoice
            JOIN InvoiceLine ON Invoice.InvoiceId = InvoiceLine.InvoiceId
            WHERE Invoice.CustomerId = :cid
            ORDER BY InvoiceLine.UnitPrice DESC;
        """, {"cid": customer_id})
        return serialize_rows(rows)

    @tool
    def get_employee_by_invoice_and_customer(invoice_id: int) -> str:
        """This tool will take in an invoice ID and return the employee information associated with the invoice. The customer ID is automatically retrieved from the state."""
        if customer_id is None:
            return CUSTOMER_NOT_VERIFIED
        rows = fetch_rows(engine, """
            SELECT Employee.FirstName, Employee.Title, Employee.Email
            FROM Employee
            JOIN Customer ON Customer.SupportRepId = Employee.EmployeeId
            JOIN Invoice ON Invoice.CustomerId = Customer.CustomerId
            WHERE Invoice.InvoiceId = :iid AND Invoice.CustomerId = :cid;
        """, {"iid": invoice_id, "cid": customer_id})
        if not rows:
            return no_results(f"No employee found for invoice ID {invoice_id} and customer identifier {customer_id}.")
        return serialize_rows(rows)

    return [
        get_invoices_by_customer_sorted_by_date,
        get_invoices_sorted_by_unit_price,
        get_employee_by_invoice_and_customer,
    ]
