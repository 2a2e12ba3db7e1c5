"""A minimal stand-in for the Airflow TaskInstance XCom interface"""

from typing import Any


class TaskInstance:
    """Stores task outputs so downstream tasks can pull them by task id and key.

    Keys are pushed as ``"{task_id}.{key}"``. Pulling without a key returns the
    ``return_value`` entry for the task.
    """

    def __init__(self) -> None:
        self.xcom_store: dict[str, Any] = {}

    def xcom_push(self, key: str, value: Any) -> None:
        """Push a value under a fully qualified key

        Parameters
        ----------
        key : str
            The ``task_id.key`` string
        value : Any
            The value to store
        """
        self.xcom_store[key] = value

    def xcom_pull(self, task_id: str, key: str = "return_value") -> Any:
        """Pull a value pushed by an earlier task

        Parameters
        ----------
        task_id : str
            The id of the task that pushed the value
        key : str, optional
            The key within the task's outputs, by default "return_value"

        Returns
        -------
        Any
            The stored value, or None if nothing was pushed
        """
        return self.xcom_store.get(f"{task_id}.{key}")
