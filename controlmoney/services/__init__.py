"""Services package: storage backends, cross-backend sync and spreadsheet sync."""
