import typing

from errors import NotFoundError


class ShipmentStore:
    """
    In-memory collection of shipment records keyed by tracking number.

    Tracking numbers are not enforced to be unique: create() always appends, lookups return the
    first match and delete() removes every match. Nothing survives a restart.
    """

    def __init__(self, shipments: typing.Optional[typing.List[dict]] = None):
        self._shipments = list(shipments or [])

    def __len__(self) -> int:
        return len(self._shipments)

    def _index_of(self, tracking_number: str) -> int:
        for index, shipment in enumerate(self._shipments):
            if shipment.get("trackingNumber") == tracking_number:
                return index
        raise NotFoundError(tracking_number)

    def list(self) -> typing.List[dict]:
        return list(self._shipments)

    def get(self, tracking_number: str) -> dict:
        return self._shipments[self._index_of(tracking_number)]

    def create(self, record: dict) -> dict:
        self._shipments.append(record)
        return record

    def update(self, tracking_number: str, fields: typing.Dict) -> dict:
        index = self._index_of(tracking_number)
        self._shipments[index] = {**self._shipments[index], **fields}
        return self._shipments[index]

    def delete(self, tracking_number: str) -> int:
        remaining = [s for s in self._shipments if s.get("trackingNumber") != tracking_number]
        removed = len(self._shipments) - len(remaining)
        self._shipments = remaining
        return removed

    def clear(self) -> None:
        self._shipments = []

    def tracking_numbers(self) -> typing.List[str]:
        return [s.get("trackingNumber") for s in self._shipments]
