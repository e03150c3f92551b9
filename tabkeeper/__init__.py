"""tab-keeper: snapshot, restore and undo for grouped browser tabs."""
